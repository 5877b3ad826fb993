from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

from cachetools import TLRUCache

from ingest.models import CanonicalAlert


class AlertCache(Protocol):
    def get(self, source_id: str) -> tuple[CanonicalAlert, ...] | None: ...

    def set(self, source_id: str, alerts: tuple[CanonicalAlert, ...], ttl_s: float) -> None: ...


def _expires_at(
    _source_id: str, entry: tuple[tuple[CanonicalAlert, ...], float], now: float
) -> float:
    return now + entry[1]


class MemoryAlertCache:
    """Per-source normalized alerts, each kept for its own TTL. A ttl of 0 stores nothing."""

    def __init__(self, maxsize: int = 1024, clock: Callable[[], float] = time.monotonic) -> None:
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=clock)

    def get(self, source_id: str) -> tuple[CanonicalAlert, ...] | None:
        entry = self._cache.get(source_id)
        return entry[0] if entry is not None else None

    def set(self, source_id: str, alerts: tuple[CanonicalAlert, ...], ttl_s: float) -> None:
        if ttl_s <= 0:
            self._cache.pop(source_id, None)
            return
        self._cache[source_id] = (tuple(alerts), ttl_s)

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)
