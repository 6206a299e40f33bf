"""Contracts the transfer engine consumes from and exposes to its surroundings."""

from ferry_core.interfaces.catalog import RepositoryCatalog
from ferry_core.interfaces.identity import IdentityProvider
from ferry_core.interfaces.sinks import OutcomeSink, ProgressSink

__all__ = [
    "IdentityProvider",
    "OutcomeSink",
    "ProgressSink",
    "RepositoryCatalog",
]
