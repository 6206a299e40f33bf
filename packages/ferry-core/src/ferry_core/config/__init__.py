from .loader import load_config
from .models import FerryConfig, ServerConfig, TransferConfig
from .registry import ServerRegistry

__all__ = [
    "FerryConfig",
    "ServerConfig",
    "ServerRegistry",
    "TransferConfig",
    "load_config",
]
