"""Pydantic schema of the persisted transfer state."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

STATE_VERSION = 1


class TimeRange(BaseModel):
    started: datetime | None = None
    ended: datetime | None = None


class DiffWindow(BaseModel):
    """One incremental catch-up window and the sub-phases that processed it."""

    handled_range: TimeRange
    files_diff: TimeRange = Field(default_factory=TimeRange)
    properties_diff: TimeRange = Field(default_factory=TimeRange)
    completed: bool = False


class RepositoryState(BaseModel):
    name: str
    migration: TimeRange = Field(default_factory=TimeRange)
    diffs: list[DiffWindow] = Field(default_factory=list)

    def last_diff(self) -> DiffWindow | None:
        return self.diffs[-1] if self.diffs else None


class TransferState(BaseModel):
    version: int = STATE_VERSION
    repositories: list[RepositoryState] = Field(default_factory=list)
    nodes: list[str] = Field(default_factory=list)

    def find_repo(self, name: str) -> RepositoryState | None:
        for repo in self.repositories:
            if repo.name == name:
                return repo
        return None

    def get_repo(self, name: str) -> RepositoryState:
        """Return the entry for *name*, creating it on first use."""
        repo = self.find_repo(name)
        if repo is None:
            repo = RepositoryState(name=name)
            self.repositories.append(repo)
        return repo
