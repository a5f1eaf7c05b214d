from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

from survey_analytics.engine.models import CalculationResult


@dataclass(frozen=True)
class CacheEntry:
    result: CalculationResult
    fingerprint: str
    response_count: int
    calculated_at: float


class CacheStorage(Protocol):
    # Any backend holding one entry per campaign id (in-process dict, Redis, a DB table, ...).
    def get(self, campaign_id: str) -> Optional[CacheEntry]: ...

    def set(self, campaign_id: str, entry: CacheEntry) -> None: ...

    def delete(self, campaign_id: str) -> None: ...

    def clear(self) -> None: ...

    def items(self) -> List[Tuple[str, CacheEntry]]: ...


class InMemoryCacheStorage:
    """
    Process-local storage. Each worker process holds its own copy, so an
    invalidation only reaches the process that receives it.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, campaign_id: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(campaign_id)

    def set(self, campaign_id: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[campaign_id] = entry

    def delete(self, campaign_id: str) -> None:
        with self._lock:
            self._entries.pop(campaign_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def items(self) -> List[Tuple[str, CacheEntry]]:
        with self._lock:
            return list(self._entries.items())
