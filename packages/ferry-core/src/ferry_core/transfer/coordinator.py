"""Admission control over in-flight upload chunks and the token polling loop."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from ferry_core.agent.client import SourceAgentClient
from ferry_core.agent.models import ChunkState, ChunkStatus, FileOutcome, FileStatus, UploadChunk
from ferry_core.errors import AgentBusyError, NetworkTransientError, TransferInterruptedError

logger = logging.getLogger(__name__)

# Tokens per getUploadChunksStatus request
STATUS_BATCH_SIZE = 100
# Consecutive failed polling ticks tolerated before the phase is aborted
MAX_POLL_FAILURES = 3


class ChunkCoordinator:
    """Bounds in-flight chunks to ``threads`` and polls their tokens to completion.

    One coordinator serves one phase. Workers call :meth:`submit`; a single
    background thread owns the outstanding tokens.
    """

    def __init__(
        self,
        agent: SourceAgentClient,
        threads: int,
        on_outcome: Callable[[FileOutcome], None],
        on_chunk_done: Callable[[UploadChunk], None] | None = None,
        poll_interval: float = 3.0,
        acquire_interval: float = 0.5,
        cancel: threading.Event | None = None,
    ) -> None:
        self._agent = agent
        self.threads = threads
        self._on_outcome = on_outcome
        self._on_chunk_done = on_chunk_done
        self.poll_interval = poll_interval
        self.acquire_interval = acquire_interval
        self.cancel = cancel or threading.Event()

        self._lock = threading.Lock()
        self._in_flight = 0
        self.peak_in_flight = 0
        self._tokens: queue.Queue[tuple[str, UploadChunk]] = queue.Queue()
        self._done = threading.Event()
        self._failed = threading.Event()
        self._error: Exception | None = None
        self._thread: threading.Thread | None = None

    # -- admission ---------------------------------------------------------

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def try_acquire(self) -> bool:
        with self._lock:
            if self._in_flight >= self.threads:
                return False
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            return True

    def release(self) -> None:
        with self._lock:
            if self._in_flight == 0:
                raise RuntimeError("release() without a matching acquire")
            self._in_flight -= 1

    def _acquire(self) -> None:
        while not self.try_acquire():
            self._raise_if_stopped()
            self.cancel.wait(self.acquire_interval)
        if self.cancel.is_set() or self._failed.is_set():
            self.release()
            self._raise_if_stopped()

    def _raise_if_stopped(self) -> None:
        if self._failed.is_set() and self._error is not None:
            raise self._error
        if self.cancel.is_set():
            raise TransferInterruptedError("phase cancelled", "submit chunk")

    def submit(self, chunk: UploadChunk) -> None:
        """Block for a slot, hand the chunk to the agent and track its token."""
        while True:
            self._acquire()
            try:
                token = self._agent.upload_chunk(chunk)
            except AgentBusyError:
                self.release()
                logger.debug("Agent busy, retrying chunk in %.2fs", self.acquire_interval)
                self.cancel.wait(self.acquire_interval)
                continue
            except BaseException:
                self.release()
                raise
            break

        if not token:
            self.release()
            logger.debug("Chunk of %d file(s) completed synchronously", len(chunk.upload_candidates))
            for ref in chunk.upload_candidates:
                self._on_outcome(
                    FileOutcome(repo=ref.repo, path=ref.path, name=ref.name, status=FileStatus.SUCCESS)
                )
            if self._on_chunk_done:
                self._on_chunk_done(chunk)
            return
        logger.debug("Chunk of %d file(s) accepted as %s", len(chunk.upload_candidates), token)
        self._tokens.put((token, chunk))

    # -- polling -----------------------------------------------------------

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run_poller, name="chunk-poller", daemon=True)
        self._thread.start()

    def finish(self) -> None:
        """Signal that no more chunks will come, wait for the poller, re-raise its error."""
        self._done.set()
        if self._thread is not None:
            self._thread.join()
        if self._error is not None:
            raise self._error

    def _run_poller(self) -> None:
        try:
            self._poll_until_drained()
        except Exception as e:
            logger.error("Chunk polling failed: %s", e)
            self._error = e
            self._failed.set()
            self.cancel.set()

    def _poll_until_drained(self) -> None:
        outstanding: dict[str, UploadChunk] = {}
        failures = 0
        while not self.cancel.is_set():
            self._drain_new_tokens(outstanding)
            if outstanding:
                try:
                    self._poll_once(outstanding)
                    failures = 0
                except NetworkTransientError as e:
                    failures += 1
                    if failures >= MAX_POLL_FAILURES:
                        raise
                    logger.warning("Polling tick failed (%d/%d): %s", failures, MAX_POLL_FAILURES, e)
            elif self._done.is_set() and self._tokens.empty():
                return
            self.cancel.wait(self.poll_interval)
        if outstanding or not self._tokens.empty():
            logger.info(
                "Abandoning %d in-flight chunk(s); the agent keeps processing them",
                len(outstanding) + self._tokens.qsize(),
            )

    def _drain_new_tokens(self, outstanding: dict[str, UploadChunk]) -> None:
        while True:
            try:
                token, chunk = self._tokens.get_nowait()
            except queue.Empty:
                return
            outstanding[token] = chunk

    def _poll_once(self, outstanding: dict[str, UploadChunk]) -> None:
        tokens = list(outstanding)
        for i in range(0, len(tokens), STATUS_BATCH_SIZE):
            batch = tokens[i : i + STATUS_BATCH_SIZE]
            for status in self._agent.get_upload_chunks_status(batch):
                self._handle_status(status, outstanding)

    def _handle_status(self, status: ChunkStatus, outstanding: dict[str, UploadChunk]) -> None:
        chunk = outstanding.get(status.uuid_token)
        if chunk is None:
            logger.warning("Agent reported unknown chunk token %s", status.uuid_token)
            return
        if status.status != ChunkState.DONE:
            return
        del outstanding[status.uuid_token]
        self.release()

        reported = {f.ref for f in status.files}
        for outcome in status.files:
            self._on_outcome(outcome)
        for ref in chunk.upload_candidates:
            if ref not in reported:
                self._on_outcome(
                    FileOutcome(repo=ref.repo, path=ref.path, name=ref.name, status=FileStatus.SUCCESS)
                )
        if self._on_chunk_done:
            self._on_chunk_done(chunk)
