"""Full walk of a repository's tree, shipping every file and empty folder."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from ferry_core.agent.models import FileOutcome, FileRef
from ferry_core.aql.queries import folder_contents_query
from ferry_core.errors import PathNotFoundError
from ferry_core.snapshot.manager import RepoSnapshot
from ferry_core.snapshot.node import ROOT_NAME, Node
from ferry_core.transfer.phases import FolderTask, Phase, WorkUnit, join_path, split_path

logger = logging.getLogger(__name__)

SNAPSHOTS_DIR = "snapshots"


class MigrationPhase(Phase):
    name = "migration"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.snapshot = RepoSnapshot(self.repo_key)
        self._empty_folders: set[FileRef] = set()
        self._lock = threading.Lock()
        # False until the snapshot was loaded or started fresh by this run
        self._snapshot_ready = False

    @property
    def snapshot_path(self) -> Path:
        return self.ctx.transfer_dir / SNAPSHOTS_DIR / f"{self.repo_key}.json"

    def should_skip(self) -> bool:
        return self.ctx.state.is_repo_migrated(self.repo_key)

    def on_start(self) -> None:
        if self.snapshot_path.exists():
            if self.ctx.state.is_migration_started(self.repo_key):
                self.snapshot = RepoSnapshot.load(self.snapshot_path, self.repo_key)
                logger.info("Resuming migration of %s from saved snapshot", self.repo_key)
            else:
                self.snapshot_path.unlink()
        self._snapshot_ready = True
        self.ctx.state.repo_migration_started(self.repo_key)
        if self.ctx.config.properties_diff:
            self.ctx.agent.store_properties(self.repo_key)

    def initial_tasks(self) -> Iterable[WorkUnit]:
        return [FolderTask(self.repo_key, ROOT_NAME)]

    def handle(self, task: WorkUnit, enqueue: Callable[[WorkUnit], None]) -> None:
        if not isinstance(task, FolderTask):
            raise self.unexpected_task(task)
        try:
            node = self.snapshot.get_node(task.path)
        except PathNotFoundError:
            if self.snapshot.completed:
                return
            raise
        if node.completed:
            return
        if node.done_exploring:
            self._resume_folder(task, node, enqueue)
        else:
            self._explore_folder(task, enqueue)

    def _explore_folder(self, task: FolderTask, enqueue: Callable[[WorkUnit], None]) -> None:
        node, pool = self.snapshot.begin_exploring(task.path)
        builder = self.chunk_builder()
        empty = True
        for page in self.ctx.aql.iter_pages(folder_contents_query(task.repo_key, task.path)):
            for item in page:
                if item.name == ".":
                    continue
                empty = False
                if item.type == "folder":
                    self.snapshot.add_child(node, item.name, pool)
                    enqueue(FolderTask(task.repo_key, join_path(task.path, item.name)))
                else:
                    self.snapshot.add_file(node, item.name)
                    builder.add(FileRef(repo=item.repo, path=item.path, name=item.name))
            self.raise_if_cancelled()
        builder.flush()
        if pool:
            logger.debug("%d folder(s) under %s/%s no longer exist", len(pool), task.repo_key, task.path)

        if empty and task.path != ROOT_NAME:
            self.snapshot.done_exploring(node, collapse=False)
            self._ship_empty_folder(task)
        else:
            self.snapshot.done_exploring(node)

    def _resume_folder(self, task: FolderTask, node: Node, enqueue: Callable[[WorkUnit], None]) -> None:
        files, children = self.snapshot.pending(node)
        for name in children:
            enqueue(FolderTask(task.repo_key, join_path(task.path, name)))
        builder = self.chunk_builder()
        for name in files:
            builder.add(FileRef(repo=task.repo_key, path=task.path, name=name))
        builder.flush()
        if not files and not children and task.path != ROOT_NAME:
            self._ship_empty_folder(task)
        else:
            self.snapshot.done_exploring(node)

    def _ship_empty_folder(self, task: FolderTask) -> None:
        parent, name = split_path(task.path)
        ref = FileRef(repo=task.repo_key, path=parent, name=name)
        with self._lock:
            self._empty_folders.add(ref)
        self.submit_files([ref])

    def on_outcome(self, outcome: FileOutcome) -> None:
        ref = outcome.ref
        with self._lock:
            folder = ref in self._empty_folders
            self._empty_folders.discard(ref)
        if folder:
            self.snapshot.folder_completed(join_path(ref.path, ref.name))
        else:
            self.snapshot.file_completed(ref.path, ref.name)

    def on_finish(self) -> None:
        if not self.snapshot.completed:
            logger.warning("Migration of %s finished with an uncollapsed snapshot", self.repo_key)
        self.ctx.state.repo_migration_completed(self.repo_key)
        self.snapshot_path.unlink(missing_ok=True)

    def on_error(self, error: Exception) -> None:
        if not self._snapshot_ready:
            return
        try:
            self.snapshot.save(self.snapshot_path)
            logger.info("Saved migration snapshot of %s to %s", self.repo_key, self.snapshot_path)
        except OSError as e:
            logger.warning("Could not save migration snapshot of %s: %s", self.repo_key, e)
