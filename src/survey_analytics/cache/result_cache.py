"""
Per-campaign cache of unfiltered calculation results.

One slot per campaign id. A cached result is reused only when the caller is
not forcing a recalculation, the input fingerprint matches and the entry is
younger than the TTL. Results are stored unfiltered; the anonymity gate runs
on every read.
"""
from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from survey_analytics.app.logging import get_logger
from survey_analytics.engine.models import (
    CalculationConfig,
    CalculationResult,
    CompanyParams,
    Response,
    SurveyDefinition,
    json_sanitize,
)
from survey_analytics.engine.responses import normalize_answers

from .storage import CacheEntry, CacheStorage, InMemoryCacheStorage

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300


def compute_fingerprint(responses: Iterable[Response], company: Optional[CompanyParams] = None,
                        config: Optional[CalculationConfig] = None,
                        definition: Optional[SurveyDefinition] = None) -> str:
    """SHA-256 over the canonical JSON of every input that can change a result."""
    payload = {
        "responses": [
            {
                "respondent_hash": r.respondent_hash,
                "answers": {i.question_id: i.value for i in normalize_answers(r.answers)},
                "is_complete": r.is_complete,
                "is_synthetic": r.is_synthetic,
                "is_archived": r.is_archived,
                "submitted_at": r.submitted_at,
            }
            for r in responses
        ],
        "company": company,
        "config": config,
        "definition": definition,
    }
    canonical = json.dumps(json_sanitize(payload), sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheLookup:
    result: CalculationResult
    from_cache: bool
    cache_age: Optional[float] = None


class ResultCache:
    """
    Usage:
        cache = ResultCache(ttl_seconds=300)
        lookup = cache.get_cached_result(campaign_id, fingerprint, lambda: engine.calculate(...))
        if lookup.from_cache:
            ...

    Computation runs outside the storage lock; when two requests race on the
    same campaign, both compute and the last write wins.
    """

    def __init__(self, storage: Optional[CacheStorage] = None, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.storage: CacheStorage = storage if storage is not None else InMemoryCacheStorage()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.calculated_at < self.ttl_seconds

    def get_cached_result(self, campaign_id: str, fingerprint: str,
                          compute: Callable[[], CalculationResult],
                          force_recalculate: bool = False) -> CacheLookup:
        now = self._clock()
        if not force_recalculate:
            entry = self.storage.get(campaign_id)
            if entry is not None and entry.fingerprint == fingerprint and self._is_fresh(entry, now):
                age = round(now - entry.calculated_at, 3)
                logger.info("Cache hit", extra={"cache_age": age})
                return CacheLookup(result=entry.result, from_cache=True, cache_age=age)
            if entry is not None:
                logger.info("Cache entry stale or fingerprint changed; recalculating")
            else:
                logger.info("Cache miss")

        result = compute()
        self.storage.set(campaign_id, CacheEntry(
            result=result,
            fingerprint=fingerprint,
            response_count=result.response_count,
            calculated_at=self._clock(),
        ))
        return CacheLookup(result=result, from_cache=False, cache_age=None)

    def invalidate(self, campaign_id: str) -> None:
        self.storage.delete(campaign_id)
        logger.info("Cache invalidated", extra={"invalidated_campaign": campaign_id})

    def clear(self) -> None:
        self.storage.clear()

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [cid for cid, entry in self.storage.items() if not self._is_fresh(entry, now)]
        for cid in expired:
            self.storage.delete(cid)
        if expired:
            logger.debug("Expired cache entries removed", extra={"removed": len(expired)})
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        entries = self.storage.items()
        return {
            "size": len(entries),
            "ttl_seconds": self.ttl_seconds,
            "entries": [
                {
                    "campaign_id": cid,
                    "response_count": e.response_count,
                    "age_seconds": round(now - e.calculated_at, 3),
                    "expired": not self._is_fresh(e, now),
                }
                for cid, e in entries
            ],
        }
