from .models import STATE_VERSION, DiffWindow, RepositoryState, TimeRange, TransferState
from .store import StateStore, utc_now

__all__ = [
    "DiffWindow",
    "RepositoryState",
    "STATE_VERSION",
    "StateStore",
    "TimeRange",
    "TransferState",
    "utc_now",
]
