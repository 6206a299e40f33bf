"""Shared httpx plumbing for talking to one platform server."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Generator
from typing import TYPE_CHECKING, Any

import backoff
import httpx

from ferry_core.config.models import ServerConfig
from ferry_core.errors import AgentProtocolError, NetworkTransientError

if TYPE_CHECKING:
    from ferry_core.interfaces.identity import IdentityProvider

logger = logging.getLogger(__name__)


class ServerAuth(httpx.Auth):
    """Signs each request with the credentials current at send time.

    A bearer token wins over a user/password pair.
    """

    def __init__(self, credentials: Callable[[], ServerConfig]) -> None:
        self._credentials = credentials

    @classmethod
    def fixed(cls, server: ServerConfig) -> ServerAuth:
        return cls(lambda: server)

    @classmethod
    def from_provider(cls, identity: IdentityProvider, server_id: str) -> ServerAuth:
        return cls(lambda: identity.get_server(server_id))

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        server = self._credentials()
        if server.access_token:
            request.headers["Authorization"] = f"Bearer {server.access_token}"
            yield request
        elif server.user and server.password:
            yield from httpx.BasicAuth(server.user, server.password).auth_flow(request)
        else:
            yield request


class ServerHttpClient:
    """Blocking httpx client bound to one server, with retry on transient errors.

    Pass ``auth`` (usually :meth:`ServerAuth.from_provider`) to have credentials
    looked up per request; otherwise the ones in *server* are used as given.
    """

    def __init__(
        self,
        server: ServerConfig,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        auth: httpx.Auth | None = None,
    ) -> None:
        self.server = server
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = httpx.Client(
            base_url=server.url.rstrip("/") + "/",
            auth=auth or ServerAuth.fixed(server),
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ServerHttpClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def request(
        self,
        method: str,
        path: str,
        operation: str,
        allow: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transient failures ``max_retries`` times.

        Statuses listed in *allow* are returned to the caller instead of raising.
        """

        def _on_retry(details: dict) -> None:
            logger.warning(
                "%s: %s (retry %d/%d in %.1fs)",
                operation, details["exception"], details["tries"], self.max_retries, details["wait"],
            )

        @backoff.on_exception(
            backoff.constant,
            NetworkTransientError,
            max_tries=self.max_retries + 1,
            interval=self.retry_delay,
            jitter=None,
            on_backoff=_on_retry,
            logger=None,
        )
        def _do_send() -> httpx.Response:
            return self._send(method, path, operation, allow, **kwargs)

        return _do_send()

    def _send(
        self, method: str, path: str, operation: str, allow: tuple[int, ...], **kwargs: Any
    ) -> httpx.Response:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise NetworkTransientError(str(e) or type(e).__name__, operation, e) from e
        if resp.status_code in allow or resp.is_success:
            return resp
        if resp.status_code >= 500:
            raise NetworkTransientError(f"HTTP {resp.status_code}", operation)
        raise AgentProtocolError(
            f"unexpected HTTP {resp.status_code}",
            operation,
            body=resp.text,
            status_code=resp.status_code,
        )


def parse_json(resp: httpx.Response, operation: str) -> Any:
    """Decode a JSON body or raise AgentProtocolError carrying the raw text."""
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise AgentProtocolError("response is not JSON", operation, body=resp.text, cause=e) from e
