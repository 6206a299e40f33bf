"""Thread-safe repository snapshot: trie, path cache and JSON persistence."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from ferry_core.errors import PathNotFoundError, StateCorruptionError
from ferry_core.snapshot.lru import CACHE_CAPACITY, LRUCache
from ferry_core.snapshot.node import ROOT_NAME, Node, look_up

logger = logging.getLogger(__name__)


class RepoSnapshot:
    """The live directory trie of one repository being migrated.

    Worker threads grow the tree while the polling thread completes files,
    so every operation goes through one lock.
    """

    def __init__(self, repo_key: str, root: Node | None = None, capacity: int = CACHE_CAPACITY) -> None:
        self.repo_key = repo_key
        self.root = root or Node(ROOT_NAME)
        self._cache: LRUCache[str, Node] = LRUCache(capacity)
        self._lock = threading.RLock()

    @property
    def completed(self) -> bool:
        return self.root.completed

    def get_node(self, relative_path: str) -> Node:
        """Return the live node for *relative_path*, consulting the cache first."""
        with self._lock:
            node = self._cache.get(relative_path)
            if node is not None and not node.completed:
                return node
            if node is not None:
                self._cache.remove(relative_path)
            node = look_up(self.root, relative_path)
            self._cache.add(relative_path, node)
            return node

    def begin_exploring(self, relative_path: str) -> tuple[Node, dict[str, Node]]:
        """Reset a folder for a fresh listing; returns the node and its old children."""
        with self._lock:
            node = self.get_node(relative_path)
            return node, node.reset_exploring()

    def add_child(self, node: Node, name: str, pool: dict[str, Node] | None = None) -> Node:
        with self._lock:
            return node.add_child(name, pool)

    def add_file(self, node: Node, name: str) -> None:
        with self._lock:
            node.add_file(name)

    def done_exploring(self, node: Node, collapse: bool = True) -> None:
        """Mark *node* fully enumerated and collapse it if nothing is left."""
        with self._lock:
            node.done_exploring = True
            if collapse:
                node.check_completed()

    def file_completed(self, relative_path: str, name: str) -> None:
        with self._lock:
            node = self.get_node(relative_path)
            node.file_completed(name)
            node.check_completed()

    def folder_completed(self, relative_path: str) -> None:
        """Acknowledge an empty folder the target now mirrors."""
        with self._lock:
            try:
                node = self.get_node(relative_path)
            except PathNotFoundError:
                logger.debug("Folder %s/%s already collapsed", self.repo_key, relative_path)
                return
            node.check_completed()

    def pending(self, node: Node) -> tuple[list[str], list[str]]:
        """Pending file names and incomplete child names of an explored node."""
        with self._lock:
            files = sorted(node.files)
            children = [name for name, child in node.children.items() if not child.completed]
            return files, children

    # -- persistence -------------------------------------------------------

    def save(self, path: Path) -> None:
        """Write the trie atomically to *path*."""
        with self._lock:
            payload = json.dumps(
                {"repo_key": self.repo_key, "root": self.root.to_dict()}, indent=2
            )
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, path)

    @classmethod
    def load(cls, path: Path, repo_key: str) -> RepoSnapshot:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StateCorruptionError(f"cannot parse {path}: {e}", "load snapshot", e) from e
        if not isinstance(data, dict) or "root" not in data:
            raise StateCorruptionError(f"{path} is not a repository snapshot", "load snapshot")
        if data.get("repo_key") != repo_key:
            raise StateCorruptionError(
                f"{path} belongs to repository {data.get('repo_key')!r}, not {repo_key!r}",
                "load snapshot",
            )
        return cls(repo_key, Node.from_dict(data["root"]))
