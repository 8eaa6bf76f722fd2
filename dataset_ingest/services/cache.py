from __future__ import annotations

import copy
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from dataset_ingest.utils.config import CacheConfig, load_cache_config

CacheKey = tuple[str, str]


class DatasetCache:
    """Bounded TTL cache of serialized dataset payloads keyed by ``(owner_id, dataset_id)``.

    Purely a read optimization: a disabled cache (``ttl_seconds <= 0``) behaves as
    a permanent miss. Writers must call ``invalidate`` after mutating a dataset.

    Readers take a ``generation`` token before loading from the store and hand it
    back to ``put``; an ``invalidate`` in between bumps the generation and the
    stale payload is dropped instead of cached.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 256,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[CacheKey, tuple[float, dict[str, Any]]] = OrderedDict()
        self._generations: dict[CacheKey, int] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: CacheConfig | None = None) -> "DatasetCache":
        resolved = config or load_cache_config()
        return cls(resolved.ttl_seconds, resolved.max_entries)

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, owner_id: str, dataset_id: str) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        key = (owner_id, dataset_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return copy.deepcopy(payload)

    def generation(self, owner_id: str, dataset_id: str) -> int:
        with self._lock:
            return self._generations.get((owner_id, dataset_id), 0)

    def put(
        self,
        owner_id: str,
        dataset_id: str,
        payload: dict[str, Any],
        *,
        generation: int | None = None,
    ) -> bool:
        """Store ``payload`` unless the key was invalidated after ``generation`` was taken."""
        if not self.enabled:
            return False
        key = (owner_id, dataset_id)
        with self._lock:
            if generation is not None and self._generations.get(key, 0) != generation:
                return False
            self._entries[key] = (self._clock() + self.ttl_seconds, copy.deepcopy(payload))
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return True

    def invalidate(self, owner_id: str, dataset_id: str) -> None:
        if not self.enabled:
            return
        key = (owner_id, dataset_id)
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
