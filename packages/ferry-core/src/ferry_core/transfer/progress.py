"""Progress sinks: a silent one and a rich console one."""

from __future__ import annotations

import threading
import time
from collections import Counter

from rich.console import Console


class NullProgressSink:
    def phase_started(self, repo_key: str, phase: str) -> None:
        pass

    def chunk_done(self, repo_key: str, phase: str, files: int) -> None:
        pass

    def phase_finished(self, repo_key: str, phase: str, error: Exception | None) -> None:
        pass


class RichProgressSink:
    """Prints one status line per phase boundary."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._files: Counter[tuple[str, str]] = Counter()
        self._started: dict[tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def phase_started(self, repo_key: str, phase: str) -> None:
        with self._lock:
            self._started[(repo_key, phase)] = time.monotonic()
            self._files[(repo_key, phase)] = 0
        self.console.print(f"[bold]{repo_key}[/bold] [cyan]{phase}[/cyan] started")

    def chunk_done(self, repo_key: str, phase: str, files: int) -> None:
        with self._lock:
            self._files[(repo_key, phase)] += files

    def phase_finished(self, repo_key: str, phase: str, error: Exception | None) -> None:
        with self._lock:
            elapsed = time.monotonic() - self._started.pop((repo_key, phase), time.monotonic())
            files = self._files.pop((repo_key, phase), 0)
        if error is None:
            self.console.print(
                f"[bold]{repo_key}[/bold] [cyan]{phase}[/cyan] [green]done[/green] "
                f"({files} file(s), {elapsed:.1f}s)"
            )
        else:
            self.console.print(
                f"[bold]{repo_key}[/bold] [cyan]{phase}[/cyan] [red]failed[/red]: {error}"
            )
