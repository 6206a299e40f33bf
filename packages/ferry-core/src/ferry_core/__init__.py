"""Ferry Core - cross-server data transfer engine for binary repository platforms."""

from ferry_core.config import FerryConfig, ServerRegistry, load_config
from ferry_core.errors import TransferError
from ferry_core.state import StateStore
from ferry_core.transfer import RunReport, TransferEngine

__version__ = "0.1.0"

__all__ = [
    "FerryConfig",
    "RunReport",
    "ServerRegistry",
    "StateStore",
    "TransferEngine",
    "TransferError",
    "load_config",
]
