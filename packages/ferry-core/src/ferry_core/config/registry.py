"""Config-backed server registry handing out credentials per server id."""

from __future__ import annotations

import os

from .models import FerryConfig, ServerConfig


class ServerRegistry:
    """IdentityProvider over the ``servers`` section of the config.

    Tokens referenced through ``access_token_env`` are read on every call,
    so a token rotated in the environment is picked up without a restart.
    """

    def __init__(self, config: FerryConfig) -> None:
        self._servers = dict(config.servers)

    def server_ids(self) -> list[str]:
        return sorted(self._servers)

    def get_server(self, server_id: str) -> ServerConfig:
        try:
            server = self._servers[server_id]
        except KeyError:
            raise ValueError(f"Unknown server id '{server_id}'") from None
        if not server.url.startswith(("http://", "https://")):
            raise ValueError(f"Server '{server_id}' url must be http(s), got {server.url!r}")
        token = server.access_token
        if server.access_token_env:
            token = os.environ.get(server.access_token_env) or token
        if not token and not (server.user and server.password):
            raise ValueError(
                f"Server '{server_id}' needs an access token or a user/password pair"
            )
        return server.model_copy(update={"access_token": token})
