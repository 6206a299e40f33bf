"""Catch-up pass for properties changed since the previous window."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from ferry_core.agent.models import PropertiesDiffRequest
from ferry_core.state.models import TimeRange
from ferry_core.transfer.phases import PropertiesCursorTask, Phase, WorkUnit, split_time_range

logger = logging.getLogger(__name__)


class PropertiesDiffPhase(Phase):
    name = "properties-diff"

    handled_range: TimeRange | None = None

    def should_skip(self) -> bool:
        if not self.ctx.config.properties_diff:
            return True
        state = self.ctx.state
        return not state.files_diff_done_in_last_window(self.repo_key) or state.is_last_window_completed(
            self.repo_key
        )

    def planned(self) -> bool:
        return self.ctx.config.properties_diff

    def on_start(self) -> None:
        self.handled_range = self.ctx.state.get_diff_handling_range(self.repo_key)
        self.ctx.state.props_diff_started(self.repo_key)

    def initial_tasks(self) -> Iterator[WorkUnit]:
        if self.handled_range is None:
            raise RuntimeError("properties diff range was not resolved")
        rng = self.handled_range
        for start, end in split_time_range(rng.started, rng.ended, self.ctx.config.window_minutes):
            yield PropertiesCursorTask(self.repo_key, start, end)

    def handle(self, task: WorkUnit, enqueue: Callable[[WorkUnit], None]) -> None:
        if not isinstance(task, PropertiesCursorTask):
            raise self.unexpected_task(task)
        cookie = ""
        delivered = 0
        while True:
            self.raise_if_cancelled()
            resp = self.ctx.agent.handle_properties_diff(
                PropertiesDiffRequest(
                    repo_key=task.repo_key, from_time=task.start, to_time=task.end, cookie=cookie
                )
            )
            delivered += resp.properties_delivered
            for outcome in resp.errors:
                self.ctx.outcomes.record(self.name, outcome)
            if not resp.has_more:
                break
            cookie = resp.cookie
        if delivered:
            self.ctx.progress.chunk_done(self.repo_key, self.name, delivered)
            logger.debug("Delivered %d properties of %s in %s -> %s", delivered, task.repo_key, task.start, task.end)

    def on_finish(self) -> None:
        self.ctx.state.props_diff_completed(self.repo_key)
