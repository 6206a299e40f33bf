"""Catch-up pass shipping files modified since the previous window."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from ferry_core.agent.models import FileRef
from ferry_core.aql.queries import time_window_query
from ferry_core.state.models import DiffWindow
from ferry_core.transfer.phases import Phase, TimeWindowTask, WorkUnit, split_time_range

logger = logging.getLogger(__name__)


class FilesDiffPhase(Phase):
    name = "files-diff"

    window: DiffWindow | None = None

    def should_skip(self) -> bool:
        return not self.ctx.state.is_repo_migrated(self.repo_key)

    def planned(self) -> bool:
        return True

    def on_start(self) -> None:
        self.window = self.ctx.state.add_diff_window(self.repo_key)
        self.ctx.state.files_diff_started(self.repo_key)
        rng = self.window.handled_range
        logger.info("Files diff of %s covers %s -> %s", self.repo_key, rng.started, rng.ended)

    def initial_tasks(self) -> Iterator[WorkUnit]:
        if self.window is None:
            raise RuntimeError("files diff window was not opened")
        rng = self.window.handled_range
        for start, end in split_time_range(rng.started, rng.ended, self.ctx.config.window_minutes):
            yield TimeWindowTask(self.repo_key, start, end)

    def handle(self, task: WorkUnit, enqueue: Callable[[WorkUnit], None]) -> None:
        if not isinstance(task, TimeWindowTask):
            raise self.unexpected_task(task)
        builder = self.chunk_builder()
        for page in self.ctx.aql.iter_pages(time_window_query(task.repo_key, task.start, task.end)):
            for item in page:
                builder.add(FileRef(repo=item.repo, path=item.path, name=item.name))
            self.raise_if_cancelled()
        builder.flush()

    def on_finish(self) -> None:
        self.ctx.state.files_diff_completed(self.repo_key)
