"""Single-writer persistence of the transfer state file."""

from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError

from ferry_core.errors import StateCorruptionError
from ferry_core.state.models import STATE_VERSION, DiffWindow, TimeRange, TransferState

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATE_FILE = "state.json"
LOCK_FILE = "state.lock"

# One writer at a time inside this process; the file lock covers other processes
_MUTEX = threading.Lock()


def utc_now() -> datetime:
    """Current time, truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


class StateStore:
    """Reads and rewrites ``<transfer_dir>/state.json`` under a double lock."""

    def __init__(self, transfer_dir: Path, properties_diff_enabled: bool = True) -> None:
        self.transfer_dir = Path(transfer_dir)
        self.state_path = self.transfer_dir / STATE_FILE
        self.lock_path = self.transfer_dir / LOCK_FILE
        self.properties_diff_enabled = properties_diff_enabled

    def exists(self) -> bool:
        return self.state_path.is_file()

    def is_clean_start(self) -> bool:
        return not self.exists()

    # -- core mutator ------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.transfer_dir.mkdir(parents=True, exist_ok=True)
        with _MUTEX, open(self.lock_path, "a") as fh:
            fcntl.flock(fh, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)

    def with_state(self, fn: Callable[[TransferState], T]) -> T:
        """Run *fn* against the current state and persist what it leaves behind."""
        with self._locked():
            state = self._read()
            result = fn(state)
            self._write(state)
            return result

    def read(self) -> TransferState:
        """Snapshot of the state without writing it back."""
        with self._locked():
            return self._read()

    def _read(self) -> TransferState:
        if not self.state_path.exists():
            return TransferState()
        raw = self.state_path.read_text(encoding="utf-8")
        try:
            state = TransferState.model_validate_json(raw)
        except ValidationError as e:
            raise StateCorruptionError(
                f"cannot parse {self.state_path}: {e}", "read state", e
            ) from e
        if state.version > STATE_VERSION:
            raise StateCorruptionError(
                f"{self.state_path} has version {state.version}, "
                f"newer than supported {STATE_VERSION}",
                "read state",
            )
        return state

    def _write(self, state: TransferState) -> None:
        payload = json.dumps(state.model_dump(mode="json"), indent=2)
        tmp = self.state_path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.state_path)

    # -- migration ---------------------------------------------------------

    def repo_migration_started(self, repo_key: str, at: datetime | None = None) -> None:
        started = at or utc_now()

        def _apply(state: TransferState) -> None:
            repo = state.get_repo(repo_key)
            if repo.migration.started is None:
                repo.migration.started = started

        self.with_state(_apply)

    def repo_migration_completed(self, repo_key: str, at: datetime | None = None) -> None:
        ended = at or utc_now()

        def _apply(state: TransferState) -> None:
            state.get_repo(repo_key).migration.ended = ended

        self.with_state(_apply)

    def is_repo_migrated(self, repo_key: str) -> bool:
        repo = self.read().find_repo(repo_key)
        return repo is not None and repo.migration.ended is not None

    def is_migration_started(self, repo_key: str) -> bool:
        repo = self.read().find_repo(repo_key)
        return repo is not None and repo.migration.started is not None

    # -- diff windows ------------------------------------------------------

    def add_diff_window(self, repo_key: str, end: datetime | None = None) -> DiffWindow:
        """Open a window from the end of the last completed one (or migration) to *end*.

        An unfinished trailing window is replaced so windows stay contiguous.
        """
        window_end = end or utc_now()

        def _apply(state: TransferState) -> DiffWindow:
            repo = state.get_repo(repo_key)
            if repo.migration.ended is None:
                raise ValueError(f"repository '{repo_key}' has not completed migration")
            while repo.diffs and not repo.diffs[-1].completed:
                dropped = repo.diffs.pop()
                logger.info(
                    "Replacing unfinished diff window %s -> %s for %s",
                    dropped.handled_range.started,
                    dropped.handled_range.ended,
                    repo_key,
                )
            last = repo.last_diff()
            start = last.handled_range.ended if last else repo.migration.ended
            window = DiffWindow(handled_range=TimeRange(started=start, ended=max(start, window_end)))
            repo.diffs.append(window)
            return window.model_copy(deep=True)

        return self.with_state(_apply)

    def get_diff_handling_range(self, repo_key: str) -> TimeRange:
        repo = self.read().find_repo(repo_key)
        if repo is None or not repo.diffs:
            raise ValueError(f"repository '{repo_key}' has no open diff window")
        return repo.diffs[-1].handled_range.model_copy()

    def _update_last_window(self, repo_key: str, fn: Callable[[DiffWindow], None]) -> None:
        def _apply(state: TransferState) -> None:
            repo = state.get_repo(repo_key)
            if not repo.diffs:
                raise ValueError(f"repository '{repo_key}' has no open diff window")
            fn(repo.diffs[-1])

        self.with_state(_apply)

    def files_diff_started(self, repo_key: str, at: datetime | None = None) -> None:
        started = at or utc_now()

        def _apply(window: DiffWindow) -> None:
            window.files_diff.started = started

        self._update_last_window(repo_key, _apply)

    def files_diff_completed(self, repo_key: str, at: datetime | None = None) -> None:
        ended = at or utc_now()

        def _apply(window: DiffWindow) -> None:
            window.files_diff.ended = ended
            if not self.properties_diff_enabled:
                window.completed = True

        self._update_last_window(repo_key, _apply)

    def props_diff_started(self, repo_key: str, at: datetime | None = None) -> None:
        started = at or utc_now()

        def _apply(window: DiffWindow) -> None:
            window.properties_diff.started = started

        self._update_last_window(repo_key, _apply)

    def props_diff_completed(self, repo_key: str, at: datetime | None = None) -> None:
        ended = at or utc_now()

        def _apply(window: DiffWindow) -> None:
            window.properties_diff.ended = ended
            if window.files_diff.ended is not None:
                window.completed = True

        self._update_last_window(repo_key, _apply)

    def is_last_window_completed(self, repo_key: str) -> bool:
        repo = self.read().find_repo(repo_key)
        last = repo.last_diff() if repo else None
        return last is not None and last.completed

    def files_diff_done_in_last_window(self, repo_key: str) -> bool:
        repo = self.read().find_repo(repo_key)
        last = repo.last_diff() if repo else None
        return last is not None and last.files_diff.ended is not None

    # -- nodes -------------------------------------------------------------

    def set_nodes(self, nodes: list[str]) -> None:
        def _apply(state: TransferState) -> None:
            state.nodes = sorted(set(nodes))

        self.with_state(_apply)

    def get_nodes(self) -> list[str]:
        return list(self.read().nodes)
