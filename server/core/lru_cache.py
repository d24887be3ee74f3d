"""Capacity-bounded LRU cache with lazy TTL expiry.

Entries live in a dict and are chained by key from least-recently-used (head)
to most-recently-used (tail). Each node stores the keys of its neighbours
rather than references to them, so the dict is the only owner of nodes.

Expired entries are not swept proactively; a ``get`` that finds one stale
removes it and reports a miss.
"""

import time
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional


def _now_seconds() -> int:
    return int(time.time())


class _Node:
    __slots__ = ("key", "value", "last_access", "prev_key", "next_key")

    def __init__(self, key: Hashable, value: Any, last_access: int):
        self.key = key
        self.value = value
        self.last_access = last_access
        self.prev_key: Optional[Hashable] = None
        self.next_key: Optional[Hashable] = None


class LRUCache:
    """In-process LRU cache with an optional time-to-live.

    Args:
        capacity: Maximum number of entries held at once (>= 1).
        ttl_seconds: Age in seconds after which an untouched entry is treated
            as absent. 0 disables expiry.
        clock: Callable returning the current time in whole seconds.
            Defaults to wall-clock time.
    """

    def __init__(self, capacity: int, ttl_seconds: int = 0,
                 clock: Optional[Callable[[], int]] = None):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")

        self._capacity = capacity
        self._ttl_seconds = ttl_seconds
        self._clock = clock or _now_seconds
        self._nodes: Dict[Hashable, _Node] = {}
        self._head: Optional[Hashable] = None
        self._tail: Optional[Hashable] = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: Hashable) -> bool:
        # Presence only: no recency update, no expiry check.
        return key in self._nodes

    def keys(self) -> List[Hashable]:
        """Keys ordered from least- to most-recently used."""
        return list(self._iter_keys())

    def _iter_keys(self) -> Iterator[Hashable]:
        key = self._head
        while key is not None:
            yield key
            key = self._nodes[key].next_key

    # ------------------------------------------------------------------
    # Linked-order bookkeeping
    # ------------------------------------------------------------------

    def _unlink(self, key: Hashable) -> None:
        node = self._nodes[key]
        prev_key, next_key = node.prev_key, node.next_key

        if prev_key is not None:
            self._nodes[prev_key].next_key = next_key
        else:
            self._head = next_key

        if next_key is not None:
            self._nodes[next_key].prev_key = prev_key
        else:
            self._tail = prev_key

        node.prev_key = None
        node.next_key = None

    def _link_tail(self, key: Hashable) -> None:
        node = self._nodes[key]
        node.last_access = self._clock()
        node.prev_key = self._tail
        node.next_key = None

        if self._tail is not None:
            self._nodes[self._tail].next_key = key
        else:
            self._head = key

        self._tail = key

    def _is_expired(self, node: _Node) -> bool:
        if self._ttl_seconds <= 0:
            return False
        return self._clock() - node.last_access >= self._ttl_seconds

    def _drop(self, key: Hashable) -> None:
        self._unlink(key)
        del self._nodes[key]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the value for ``key`` and mark it most-recently used.

        A stale entry is removed and ``default`` is returned.
        """
        node = self._nodes.get(key)
        if node is None:
            return default

        if self._is_expired(node):
            self._drop(key)
            return default

        self._unlink(key)
        self._link_tail(key)
        return node.value

    def put(self, key: Hashable, value: Any) -> None:
        """Insert or overwrite ``key``, evicting the LRU entry when full."""
        if key in self._nodes:
            self._drop(key)

        self._nodes[key] = _Node(key, value, self._clock())
        self._link_tail(key)

        if len(self._nodes) > self._capacity and self._head is not None:
            self._drop(self._head)

    def delete(self, key: Hashable) -> None:
        """Remove ``key`` if present."""
        if key in self._nodes:
            self._drop(key)

    def clear(self) -> None:
        self._nodes.clear()
        self._head = None
        self._tail = None
