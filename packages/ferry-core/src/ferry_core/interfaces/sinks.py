"""Outcome and progress sink interfaces."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ferry_core.agent.models import FileOutcome


@runtime_checkable
class OutcomeSink(Protocol):
    """Append-only record of terminal per-file outcomes."""

    def record(self, phase: str, outcome: FileOutcome) -> None: ...


@runtime_checkable
class ProgressSink(Protocol):
    """Receives phase boundaries and per-chunk ticks. Optional."""

    def phase_started(self, repo_key: str, phase: str) -> None: ...

    def chunk_done(self, repo_key: str, phase: str, files: int) -> None: ...

    def phase_finished(self, repo_key: str, phase: str, error: Exception | None) -> None: ...
