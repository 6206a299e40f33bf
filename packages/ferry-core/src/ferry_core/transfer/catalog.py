"""Repository listing and existence checks over the platform REST API."""

from __future__ import annotations

import fnmatch
import logging

from ferry_core.http import ServerHttpClient, parse_json

logger = logging.getLogger(__name__)


def filter_repositories(keys: list[str], include: list[str] | None = None, exclude: list[str] | None = None) -> list[str]:
    """Keep keys matching any include pattern (all when none) and no exclude pattern."""
    selected = []
    for key in keys:
        if include and not any(fnmatch.fnmatchcase(key, p) for p in include):
            continue
        if exclude and any(fnmatch.fnmatchcase(key, p) for p in exclude):
            continue
        selected.append(key)
    return selected


class HttpRepositoryCatalog:
    """RepositoryCatalog reading ``api/repositories`` of one server."""

    def __init__(self, http: ServerHttpClient, repo_type: str = "local") -> None:
        self._http = http
        self.repo_type = repo_type

    def list_repositories(self, include: list[str] | None = None, exclude: list[str] | None = None) -> list[str]:
        op = "list repositories"
        resp = self._http.request("GET", "api/repositories", op, params={"type": self.repo_type})
        keys = [r["key"] for r in parse_json(resp, op) if isinstance(r, dict) and "key" in r]
        return filter_repositories(keys, include, exclude)

    def exists(self, repo_key: str) -> bool:
        resp = self._http.request(
            "GET", f"api/repositories/{repo_key}", "get repository", allow=(400, 404)
        )
        return resp.is_success
