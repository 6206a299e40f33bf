"""Identity provider interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ferry_core.config.models import ServerConfig


@runtime_checkable
class IdentityProvider(Protocol):
    """Hands out credentials per server id, refreshing tokens as needed."""

    def get_server(self, server_id: str) -> ServerConfig: ...
