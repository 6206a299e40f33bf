"""Prefix-tree node modelling one directory of a source repository."""

from __future__ import annotations

from typing import Any

from ferry_core.errors import PathNotFoundError, StateCorruptionError, UnknownFileError

ROOT_NAME = "."


class Node:
    """A directory in the repository snapshot.

    A node is completed once it is done exploring, has no pending files and
    every child is completed. Completion detaches it from its parent and drops
    its subtree.
    """

    __slots__ = ("name", "parent", "children", "files", "done_exploring", "completed")

    def __init__(self, name: str, parent: Node | None = None) -> None:
        self.name = name
        self.parent = parent
        self.children: dict[str, Node] = {}
        self.files: set[str] = set()
        self.done_exploring = False
        self.completed = False

    def __repr__(self) -> str:
        return f"Node({self.path()!r}, files={len(self.files)}, children={len(self.children)})"

    def path(self) -> str:
        """Relative path inside the repository; '.' for the root."""
        parts: list[str] = []
        node: Node | None = self
        while node is not None and node.parent is not None:
            parts.append(node.name)
            node = node.parent
        return "/".join(reversed(parts)) if parts else ROOT_NAME

    # -- mutation ----------------------------------------------------------

    def add_child(self, name: str, pool: dict[str, Node] | None = None) -> Node:
        """Attach a child directory, adopting it from *pool* when present."""
        child = pool.pop(name, None) if pool else None
        if child is None:
            child = self.children.get(name) or Node(name)
        child.parent = self
        self.children[name] = child
        return child

    def add_file(self, name: str) -> None:
        self.files.add(name)

    def file_completed(self, name: str) -> None:
        try:
            self.files.remove(name)
        except KeyError:
            raise UnknownFileError(self.path(), name) from None

    def reset_exploring(self) -> dict[str, Node]:
        """Forget the enumeration of this node and hand back its children as a pool."""
        pool = self.children
        self.children = {}
        self.done_exploring = False
        return pool

    def check_completed(self) -> bool:
        """Collapse this node and any ancestors that became complete.

        Returns True if this node is completed after the call.
        """
        node: Node | None = self
        while node is not None and not node.completed:
            if not node.done_exploring or node.files:
                break
            if any(not child.completed for child in node.children.values()):
                break
            node.completed = True
            node.children = {}
            node.files = set()
            parent = node.parent
            if parent is not None:
                parent.children.pop(node.name, None)
            node = parent
        return self.completed

    # -- serialisation -----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "children": {name: child.to_dict() for name, child in self.children.items()},
            "files": sorted(self.files),
            "done_exploring": self.done_exploring,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        """Rebuild a tree from :meth:`to_dict` output, restoring parent links."""
        root = cls._build(data)
        _link_parents(root)
        return root

    @classmethod
    def _build(cls, data: dict[str, Any]) -> Node:
        try:
            node = cls(data["name"])
            node.files = set(data.get("files", []))
            node.done_exploring = bool(data.get("done_exploring", False))
            node.completed = bool(data.get("completed", False))
            node.children = {
                name: cls._build(child) for name, child in data.get("children", {}).items()
            }
        except (KeyError, TypeError, AttributeError) as e:
            raise StateCorruptionError(f"malformed snapshot node: {e}", "load snapshot", e) from e
        return node


def _link_parents(root: Node) -> None:
    stack = [root]
    while stack:
        node = stack.pop()
        for child in node.children.values():
            child.parent = node
            stack.append(child)


def look_up(root: Node, relative_path: str) -> Node:
    """Walk from *root* along a slash-separated path; '.' (or '') is the root."""
    if relative_path in (ROOT_NAME, ""):
        return root
    node = root
    for segment in relative_path.split("/"):
        child = node.children.get(segment)
        if child is None:
            raise PathNotFoundError(relative_path)
        node = child
    return node
