"""Bounded worker pool with a supervising thread, shared by every phase."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

from ferry_core.errors import TransferInterruptedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Tasks waiting for a worker before producers block
WORK_QUEUE_CAPACITY = 500_000
# How often idle waits re-check cancellation and the stop request
_TICK = 0.1


class PhaseRunner(Generic[T]):
    """Runs a handler over a branching stream of tasks with ``threads`` workers.

    The handler receives each task plus an ``enqueue`` callable for follow-up
    tasks. The run ends once every enqueued task has been handled, the first
    handler error wins and cancels the rest.
    """

    def __init__(
        self,
        threads: int,
        handler: Callable[[T, Callable[[T], None]], None],
        cancel: threading.Event | None = None,
        stop_requested: Callable[[], bool] | None = None,
        capacity: int = WORK_QUEUE_CAPACITY,
        name: str = "phase",
    ) -> None:
        self.threads = threads
        self.name = name
        self._handler = handler
        self.cancel = cancel or threading.Event()
        self._stop_requested = stop_requested
        self._tasks: queue.Queue[T] = queue.Queue(maxsize=capacity)
        self._errors: queue.Queue[Exception] = queue.Queue()
        self._idle = threading.Condition()
        self._pending = 0
        self._workers_exit = threading.Event()

    def enqueue(self, task: T) -> None:
        """Add a task; blocks while the queue is full, gives up on cancellation."""
        with self._idle:
            self._pending += 1
        while True:
            if self.cancel.is_set():
                self._task_finished()
                raise TransferInterruptedError(f"{self.name} cancelled", "enqueue task")
            try:
                self._tasks.put(task, timeout=_TICK)
                return
            except queue.Full:
                continue

    def run(self, initial: Iterable[T]) -> None:
        workers = [
            threading.Thread(target=self._work, name=f"{self.name}-worker-{i}", daemon=True)
            for i in range(self.threads)
        ]
        for w in workers:
            w.start()
        try:
            for task in initial:
                self.enqueue(task)
            self._wait_until_idle()
        except TransferInterruptedError:
            pass
        finally:
            self._workers_exit.set()
            for w in workers:
                w.join()

        if not self._errors.empty():
            raise self._errors.get()
        if self.cancel.is_set():
            raise TransferInterruptedError(f"{self.name} cancelled")

    # -- internals ---------------------------------------------------------

    def _wait_until_idle(self) -> None:
        with self._idle:
            while self._pending > 0 and not self.cancel.is_set():
                self._idle.wait(_TICK)
                if self._stop_requested is not None and self._stop_requested():
                    logger.info("Stop requested, cancelling %s", self.name)
                    self.cancel.set()

    def _task_finished(self) -> None:
        with self._idle:
            self._pending -= 1
            self._idle.notify_all()

    def _work(self) -> None:
        while not self._workers_exit.is_set():
            try:
                task = self._tasks.get(timeout=_TICK)
            except queue.Empty:
                continue
            try:
                if not self.cancel.is_set():
                    self._handler(task, self.enqueue)
            except TransferInterruptedError as e:
                if not self.cancel.is_set():
                    self._errors.put(e)
                    self.cancel.set()
            except Exception as e:
                logger.error("%s task %r failed: %s", self.name, task, e)
                self._errors.put(e)
                self.cancel.set()
            finally:
                self._task_finished()
