"""Work units, chunk building and the shared phase lifecycle."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import ClassVar, Union

from ferry_core.agent.client import SourceAgentClient
from ferry_core.agent.models import FileOutcome, FileRef, FileStatus, TargetAuth, UploadChunk
from ferry_core.aql.client import AqlClient
from ferry_core.config.models import MAX_CHUNK_SIZE, TransferConfig
from ferry_core.errors import TransferError, TransferInterruptedError
from ferry_core.interfaces.sinks import OutcomeSink, ProgressSink
from ferry_core.state.store import StateStore
from ferry_core.transfer.coordinator import ChunkCoordinator
from ferry_core.transfer.progress import NullProgressSink
from ferry_core.transfer.runner import PhaseRunner

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Work units
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FolderTask:
    repo_key: str
    path: str


@dataclass(frozen=True)
class TimeWindowTask:
    repo_key: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class PropertiesCursorTask:
    repo_key: str
    start: datetime
    end: datetime


@dataclass(frozen=True)
class RetryFileTask:
    repo_key: str
    source: Path


WorkUnit = Union[FolderTask, TimeWindowTask, PropertiesCursorTask, RetryFileTask]


def split_time_range(start: datetime, end: datetime, minutes: int = 15) -> Iterator[tuple[datetime, datetime]]:
    """Contiguous ``[t, t+minutes)`` slices of ``[start, end)``; the last may be shorter."""
    step = timedelta(minutes=minutes)
    t = start
    while t < end:
        nxt = min(t + step, end)
        yield t, nxt
        t = nxt


def join_path(parent: str, name: str) -> str:
    return name if parent in (".", "") else f"{parent}/{name}"


def split_path(relative_path: str) -> tuple[str, str]:
    """Split a folder path into (parent, name); a top-level folder has parent ''."""
    parent, _, name = relative_path.rpartition("/")
    return parent, name


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class ChunkBuilder:
    """Accumulates file references and ships them every ``chunk_size`` files."""

    def __init__(self, ship: Callable[[list[FileRef]], None], chunk_size: int) -> None:
        if not 0 < chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(f"chunk size must be within 1..{MAX_CHUNK_SIZE}, got {chunk_size}")
        self._ship = ship
        self.chunk_size = chunk_size
        self._files: list[FileRef] = []

    def add(self, ref: FileRef) -> None:
        self._files.append(ref)
        if len(self._files) >= self.chunk_size:
            self.flush()

    def flush(self) -> None:
        if not self._files:
            return
        files, self._files = self._files, []
        self._ship(files)


# ---------------------------------------------------------------------------
# Phase lifecycle
# ---------------------------------------------------------------------------


@dataclass
class PhaseContext:
    """Everything a phase needs, shared across the phases of one run."""

    agent: SourceAgentClient
    aql: AqlClient
    state: StateStore
    outcomes: OutcomeSink
    config: TransferConfig
    target_auth: Callable[[], TargetAuth]
    transfer_dir: Path
    run_id: str
    progress: ProgressSink = field(default_factory=NullProgressSink)
    check_existence_in_filestore: bool = False
    stop_requested: Callable[[], bool] | None = None


class Phase:
    """A producer/consumer pass over one repository.

    Subclasses provide the tasks, the handler and the state bookkeeping;
    this class wires the worker pool to a chunk coordinator.
    """

    name: ClassVar[str] = "phase"

    def __init__(self, ctx: PhaseContext, repo_key: str) -> None:
        self.ctx = ctx
        self.repo_key = repo_key
        self.cancel = threading.Event()
        self.coordinator: ChunkCoordinator | None = None

    # -- hooks -------------------------------------------------------------

    def should_skip(self) -> bool:
        return False

    def planned(self) -> bool:
        """Whether a dry run should report this phase, assuming earlier phases ran."""
        return not self.should_skip()

    def on_start(self) -> None:
        pass

    def initial_tasks(self) -> Iterable[WorkUnit]:
        return []

    def handle(self, task: WorkUnit, enqueue: Callable[[WorkUnit], None]) -> None:
        raise NotImplementedError

    def on_outcome(self, outcome: FileOutcome) -> None:
        pass

    def on_finish(self) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass

    # -- lifecycle ---------------------------------------------------------

    def run(self) -> None:
        cfg = self.ctx.config
        self.ctx.progress.phase_started(self.repo_key, self.name)
        logger.info("Phase %s started for %s", self.name, self.repo_key)
        self.coordinator = ChunkCoordinator(
            self.ctx.agent,
            cfg.threads,
            on_outcome=self._record_outcome,
            on_chunk_done=self._chunk_done,
            poll_interval=cfg.poll_interval,
            acquire_interval=cfg.acquire_interval,
            cancel=self.cancel,
        )
        error: Exception | None = None
        try:
            self.on_start()
            self.coordinator.start()
            runner: PhaseRunner[WorkUnit] = PhaseRunner(
                cfg.threads,
                self.handle,
                cancel=self.cancel,
                stop_requested=self.ctx.stop_requested,
                name=f"{self.name}:{self.repo_key}",
            )
            runner.run(self.initial_tasks())
        except Exception as e:
            error = e
            self.cancel.set()
        finally:
            try:
                self.coordinator.finish()
            except Exception as e:
                # The poller's failure is what cancelled the workers
                if error is None or isinstance(error, TransferInterruptedError):
                    error = e
        if error is None and self.cancel.is_set():
            error = TransferInterruptedError(f"{self.name} cancelled")

        if error is not None:
            self.on_error(error)
            logger.error("Phase %s failed for %s: %s", self.name, self.repo_key, error)
            self.ctx.progress.phase_finished(self.repo_key, self.name, error)
            raise error
        self.on_finish()
        logger.info("Phase %s completed for %s", self.name, self.repo_key)
        self.ctx.progress.phase_finished(self.repo_key, self.name, None)

    # -- helpers for subclasses ---------------------------------------------

    def chunk_builder(self) -> ChunkBuilder:
        return ChunkBuilder(self.submit_files, self.ctx.config.chunk_size)

    def submit_files(self, files: list[FileRef]) -> None:
        """Ship a list of references as one chunk; a failed hand-off fails every file."""
        if self.coordinator is None:
            raise RuntimeError(f"{self.name} is not running")
        chunk = UploadChunk(
            target_auth=self.ctx.target_auth(),
            check_existence_in_filestore=self.ctx.check_existence_in_filestore,
            upload_candidates=files,
        )
        try:
            self.coordinator.submit(chunk)
        except TransferInterruptedError:
            raise
        except TransferError as e:
            for ref in files:
                self.ctx.outcomes.record(
                    self.name,
                    FileOutcome(
                        repo=ref.repo, path=ref.path, name=ref.name, status=FileStatus.FAIL, reason=str(e)
                    ),
                )
            raise

    def unexpected_task(self, task: object) -> TypeError:
        return TypeError(f"{self.name} cannot handle {type(task).__name__}")

    def raise_if_cancelled(self) -> None:
        if self.cancel.is_set():
            raise TransferInterruptedError(f"{self.name} cancelled")

    def _record_outcome(self, outcome: FileOutcome) -> None:
        self.ctx.outcomes.record(self.name, outcome)
        self.on_outcome(outcome)

    def _chunk_done(self, chunk: UploadChunk) -> None:
        self.ctx.progress.chunk_done(self.repo_key, self.name, len(chunk.upload_candidates))
