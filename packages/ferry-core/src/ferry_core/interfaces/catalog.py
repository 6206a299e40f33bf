"""Repository catalog interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class RepositoryCatalog(Protocol):
    """Enumerates repositories on a server."""

    def list_repositories(
        self, include: list[str] | None = None, exclude: list[str] | None = None
    ) -> list[str]: ...

    def exists(self, repo_key: str) -> bool: ...
