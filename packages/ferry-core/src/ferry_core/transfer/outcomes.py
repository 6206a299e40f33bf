"""Append-only JSON-lines logs of per-file transfer outcomes."""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from pathlib import Path

from ferry_core.agent.models import FileOutcome, FileRef, FileStatus
from ferry_core.state.store import utc_now

logger = logging.getLogger(__name__)

LOGS_DIR = "logs"
RETRYABLE_DIR = "errors/retryable"
SKIPPED_DIR = "errors/skipped"


class OutcomeLog:
    """OutcomeSink writing one JSON object per line.

    Every outcome lands in ``logs/<run_id>.jsonl``; failures are also kept
    per repository under ``errors/retryable`` and large-properties skips
    under ``errors/skipped``.
    """

    def __init__(self, transfer_dir: Path, run_id: str) -> None:
        self.transfer_dir = Path(transfer_dir)
        self.run_id = run_id
        self.path = self.transfer_dir / LOGS_DIR / f"{run_id}.jsonl"
        self.counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def retryable_path(self, repo_key: str) -> Path:
        return self.transfer_dir / RETRYABLE_DIR / repo_key / f"{self.run_id}.jsonl"

    def skipped_path(self, repo_key: str) -> Path:
        return self.transfer_dir / SKIPPED_DIR / repo_key / f"{self.run_id}.jsonl"

    def record(self, phase: str, outcome: FileOutcome) -> None:
        line = json.dumps(
            {
                "repo": outcome.repo,
                "path": outcome.path,
                "name": outcome.name,
                "status": outcome.status.value,
                "status_code": outcome.status_code,
                "reason": outcome.reason,
                "phase": phase,
                "time": utc_now().isoformat(),
            }
        )
        with self._lock:
            self.counts[outcome.status.value] += 1
            _append(self.path, line)
            if outcome.status == FileStatus.FAIL:
                logger.warning(
                    "Failed to transfer %s/%s/%s: %s",
                    outcome.repo, outcome.path, outcome.name, outcome.reason or outcome.status_code,
                )
                _append(self.retryable_path(outcome.repo), line)
            elif outcome.status == FileStatus.SKIPPED_LARGE_PROPS:
                logger.info("Skipped %s/%s/%s: properties too large", outcome.repo, outcome.path, outcome.name)
                _append(self.skipped_path(outcome.repo), line)


def _append(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def read_records(path: Path) -> list[dict]:
    """Parse a JSON-lines outcome file, skipping blank lines."""
    records = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records


def read_file_refs(path: Path) -> list[FileRef]:
    return [FileRef(repo=r["repo"], path=r["path"], name=r["name"]) for r in read_records(path)]


def earlier_retryable_files(transfer_dir: Path, repo_key: str, run_id: str) -> list[Path]:
    """Failure files a previous run left for *repo_key*, oldest first."""
    repo_dir = Path(transfer_dir) / RETRYABLE_DIR / repo_key
    if not repo_dir.is_dir():
        return []
    files = []
    for p in repo_dir.glob("*.jsonl"):
        if p.stem.isdigit() and int(p.stem) < int(run_id):
            files.append(p)
    return sorted(files, key=lambda p: int(p.stem))
