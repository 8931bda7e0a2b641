"""
In-process read-through cache with tag based invalidation.

Every entry is stored under a key, expires after its own TTL and carries a set
of tags naming the entities it was built from. Writers never delete keys
directly; they invalidate the tags of the entity they touched.
"""

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Set, Tuple

from config import CACHE_ENABLED

logger = logging.getLogger(__name__)


class TaggedCache:
    def __init__(self, enabled: bool = True, clock: Callable[[], float] = time.monotonic):
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Any, Set[str]]] = {}
        self._tags: Dict[str, Set[str]] = {}
        # Bumped on every invalidation of a tag; lets a slow loader notice it raced a writer
        self._generations: Dict[str, int] = {}
        self._epoch = 0

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value, _ = entry
            if expires_at <= self._clock():
                self._drop(key)
                return default
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: float, tags: Iterable[str] = ()) -> None:
        if not self.enabled or ttl <= 0:
            return
        with self._lock:
            self._store(key, value, ttl, set(tags))

    def get_or_set(self, key: str, ttl: float, tags: Iterable[str], loader: Callable[[], Any]) -> Any:
        """Return the cached value for ``key`` or load, store and return it.

        The loaded value is not stored when any of ``tags`` was invalidated
        while ``loader`` ran, since it may predate that write.
        """
        if not self.enabled:
            return loader()
        missing = object()
        value = self.get(key, missing)
        if value is not missing:
            return value
        tags = set(tags)
        with self._lock:
            before = self._snapshot(tags)
        value = loader()
        if ttl <= 0:
            return value
        with self._lock:
            if self._snapshot(tags) == before:
                self._store(key, value, ttl, tags)
            else:
                logger.debug("Not caching %s: invalidated while loading", key)
        return value

    def invalidate(self, *tags: str) -> int:
        dropped = 0
        with self._lock:
            for tag in tags:
                self._generations[tag] = self._generations.get(tag, 0) + 1
                for key in self._tags.pop(tag, set()):
                    if key in self._entries:
                        self._drop(key)
                        dropped += 1
        logger.debug("Invalidated tags %s (%d entries)", ", ".join(tags), dropped)
        return dropped

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tags.clear()
            self._epoch += 1

    def __contains__(self, key: str) -> bool:
        return self.get(key, None) is not None

    def _snapshot(self, tags: Set[str]) -> Tuple[int, Dict[str, int]]:
        return self._epoch, {tag: self._generations.get(tag, 0) for tag in tags}

    def _store(self, key: str, value: Any, ttl: float, tags: Set[str]) -> None:
        self._drop(key)
        self._entries[key] = (self._clock() + ttl, copy.deepcopy(value), tags)
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry[2]:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]


cache = TaggedCache(enabled=CACHE_ENABLED)


def get_cache() -> TaggedCache:
    return cache
