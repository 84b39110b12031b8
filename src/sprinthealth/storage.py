"""Key-value caching with TTL and the typed storage facade used by the orchestrator."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from .errors import StorageFailure
from .models import HistoricalMetrics, Issue, ReviewRequest, Sprint, SprintReport

logger = logging.getLogger(__name__)

SPRINT_DATA_PREFIX = "sprint_data:"
REVIEW_DATA_PREFIX = "pr_data:"
HISTORICAL_METRICS_PREFIX = "historical_metrics:"
REPORT_PREFIX = "report:"

SPRINT_DATA_TTL_MS = 15 * 60 * 1000
REVIEW_DATA_TTL_MS = 10 * 60 * 1000
REPORT_TTL_MS = 60 * 60 * 1000
HISTORICAL_METRICS_TTL_MS = 24 * 60 * 60 * 1000


class Cache(Protocol):
    """Asynchronous key-value store with per-entry expiry."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_ms: int) -> None: ...

    async def delete(self, key: str) -> None: ...


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class InMemoryCache:
    """Process-local cache. Expiry is checked lazily when an entry is read."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: Any, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise ValueError("Cache TTL must be greater than 0 milliseconds.")
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_ms / 1000.0)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class StorageService:
    """Typed access to cached sprint data, review data, reports and history.

    Every error raised by the underlying cache is re-raised as
    ``StorageFailure`` so callers can treat storage as non-fatal.
    """

    def __init__(self, cache: Cache) -> None:
        self._cache = cache

    async def _get(self, key: str) -> Optional[Any]:
        try:
            return await self._cache.get(key)
        except Exception as exc:
            raise StorageFailure(f"Cache read failed for key '{key}'") from exc

    async def _set(self, key: str, value: Any, ttl_ms: int) -> None:
        try:
            await self._cache.set(key, value, ttl_ms)
        except Exception as exc:
            raise StorageFailure(f"Cache write failed for key '{key}'") from exc

    async def _delete(self, key: str) -> None:
        try:
            await self._cache.delete(key)
        except Exception as exc:
            raise StorageFailure(f"Cache delete failed for key '{key}'") from exc

    async def cache_sprint_data(self, sprint_id: str, sprint: Sprint, issues: Sequence[Issue]) -> None:
        await self._set(
            f"{SPRINT_DATA_PREFIX}{sprint_id}",
            {"sprint": sprint, "issues": list(issues)},
            SPRINT_DATA_TTL_MS,
        )

    async def get_cached_sprint_data(self, sprint_id: str) -> Optional[Tuple[Sprint, List[Issue]]]:
        cached = await self._get(f"{SPRINT_DATA_PREFIX}{sprint_id}")
        if cached is None:
            return None
        return cached["sprint"], list(cached["issues"])

    async def cache_review_data(self, sprint_id: str, reviews: Sequence[ReviewRequest]) -> None:
        await self._set(f"{REVIEW_DATA_PREFIX}{sprint_id}", list(reviews), REVIEW_DATA_TTL_MS)

    async def get_cached_review_data(self, sprint_id: str) -> Optional[List[ReviewRequest]]:
        cached = await self._get(f"{REVIEW_DATA_PREFIX}{sprint_id}")
        return list(cached) if cached is not None else None

    async def store_historical_metrics(self, history: HistoricalMetrics) -> None:
        await self._set(
            f"{HISTORICAL_METRICS_PREFIX}{history.sprint_id}",
            history,
            HISTORICAL_METRICS_TTL_MS,
        )

    async def get_historical_metric(self, sprint_id: str) -> Optional[HistoricalMetrics]:
        return await self._get(f"{HISTORICAL_METRICS_PREFIX}{sprint_id}")

    async def get_historical_metrics(self, sprint_ids: Sequence[str]) -> List[HistoricalMetrics]:
        """Return the stored snapshots among ``sprint_ids``, most recently completed first."""
        found: List[HistoricalMetrics] = []
        for sprint_id in sprint_ids:
            history = await self.get_historical_metric(sprint_id)
            if history is not None:
                found.append(history)
        return sorted(found, key=lambda history: history.completed_at, reverse=True)

    async def store_report(self, sprint_id: str, report: SprintReport) -> None:
        await self._set(f"{REPORT_PREFIX}{sprint_id}", report, REPORT_TTL_MS)

    async def get_report(self, sprint_id: str) -> Optional[SprintReport]:
        return await self._get(f"{REPORT_PREFIX}{sprint_id}")

    async def invalidate_sprint(self, sprint_id: str) -> None:
        """Drop the sprint, review and report entries for ``sprint_id``; history is kept."""
        for prefix in (SPRINT_DATA_PREFIX, REVIEW_DATA_PREFIX, REPORT_PREFIX):
            await self._delete(f"{prefix}{sprint_id}")
        logger.debug("Invalidated sprint cache", extra={"sprint_id": sprint_id})
