"""Fixed-capacity LRU map from relative path to live trie node."""

from __future__ import annotations

from collections import OrderedDict
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")

# Nodes kept reachable by path shortcut while a repository is being walked
CACHE_CAPACITY = 3000


class LRUCache(Generic[K, V]):
    """Most-recently-used tracking with a hard capacity.

    Eviction only forgets the shortcut; the value itself is untouched.
    Not thread-safe on its own, callers hold their own lock.
    """

    def __init__(self, capacity: int = CACHE_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"LRU capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: K) -> V | None:
        if key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def add(self, key: K, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
            self._entries[key] = value
            return
        if len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)
        self._entries[key] = value

    def remove(self, key: K) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        return list(self._entries)
