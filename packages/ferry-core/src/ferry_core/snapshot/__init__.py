from .lru import CACHE_CAPACITY, LRUCache
from .manager import RepoSnapshot
from .node import ROOT_NAME, Node, look_up

__all__ = ["CACHE_CAPACITY", "LRUCache", "Node", "ROOT_NAME", "RepoSnapshot", "look_up"]
