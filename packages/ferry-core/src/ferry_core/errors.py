"""Typed errors raised by the transfer engine."""

from __future__ import annotations


class TransferError(Exception):
    """Base error; wraps the underlying cause with operation context."""

    retryable = False
    # Stops the whole run instead of just the current repository
    fatal = False

    def __init__(self, message: str, operation: str = "", cause: Exception | None = None) -> None:
        self.operation = operation
        prefix = f"{operation} failed: " if operation else ""
        super().__init__(f"{prefix}{message}")
        if cause is not None:
            self.__cause__ = cause


class NetworkTransientError(TransferError):
    """Connection refused, timeout or a 5xx answer. Safe to retry."""

    retryable = True


class AgentBusyError(TransferError):
    """The agent's upload queue is full (HTTP 409)."""

    retryable = True


class AgentProtocolError(TransferError):
    """The agent answered with something we cannot interpret."""

    def __init__(
        self,
        message: str,
        operation: str = "",
        body: str = "",
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.body = body
        self.status_code = status_code
        detail = f"{message} (body: {body!r})" if body else message
        super().__init__(detail, operation, cause)


class RepositoryNotFoundError(TransferError):
    """A repository does not exist on the server we asked."""

    def __init__(self, repo_key: str, server: str = "") -> None:
        self.repo_key = repo_key
        where = f" on {server}" if server else ""
        super().__init__(f"repository '{repo_key}' does not exist{where}")


class StateCorruptionError(TransferError):
    """A persisted state or snapshot file could not be parsed."""

    fatal = True


class PathNotFoundError(TransferError):
    """A trie look-up walked into a segment that is not in the live tree."""

    fatal = True

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"path '{path}' not found in repository snapshot")


class UnknownFileError(TransferError):
    """A file completion was reported for a file the node is not tracking."""

    fatal = True

    def __init__(self, node_path: str, file_name: str) -> None:
        self.node_path = node_path
        self.file_name = file_name
        super().__init__(f"file '{file_name}' is not pending under '{node_path}'")


class TransferInterruptedError(TransferError):
    """The run was stopped on request."""

    fatal = True
