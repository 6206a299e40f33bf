"""Re-drives files that failed in earlier runs."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from ferry_core.transfer.outcomes import earlier_retryable_files, read_file_refs
from ferry_core.transfer.phases import Phase, RetryFileTask, WorkUnit

logger = logging.getLogger(__name__)


class ErrorsRetryPhase(Phase):
    name = "errors-retry"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._sources: list[Path] = earlier_retryable_files(
            self.ctx.transfer_dir, self.repo_key, self.ctx.run_id
        )

    def should_skip(self) -> bool:
        return not self._sources

    def initial_tasks(self) -> Iterable[WorkUnit]:
        return [RetryFileTask(self.repo_key, p) for p in self._sources]

    def handle(self, task: WorkUnit, enqueue: Callable[[WorkUnit], None]) -> None:
        if not isinstance(task, RetryFileTask):
            raise self.unexpected_task(task)
        builder = self.chunk_builder()
        for ref in read_file_refs(task.source):
            builder.add(ref)
        builder.flush()

    def on_finish(self) -> None:
        for p in self._sources:
            p.unlink(missing_ok=True)
        logger.info("Retried failures from %d earlier run(s) of %s", len(self._sources), self.repo_key)
