"""
In-process InsightStore. Suitable for tests, single-process deployments
and as the reference behaviour for durable backends.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from veritas.core.clock import as_utc
from veritas.schemas.schemas import NarrativeInsight, NarrativeTrend
from veritas.services.store.base import InsightStore


class InMemoryInsightStore(InsightStore):

    def __init__(self):
        self._insights: Dict[str, NarrativeInsight] = {}
        self._trends: Dict[str, Dict[str, NarrativeTrend]] = {}
        self._lock = asyncio.Lock()

    async def save(self, insight: NarrativeInsight) -> bool:
        async with self._lock:
            if insight.content_hash in self._insights:
                return False
            self._insights[insight.content_hash] = insight
            return True

    async def save_many(self, insights: Sequence[NarrativeInsight]) -> int:
        inserted = 0
        async with self._lock:
            for insight in insights:
                if insight.content_hash not in self._insights:
                    self._insights[insight.content_hash] = insight
                    inserted += 1
        return inserted

    async def find_by_content_hash(self, content_hash: str) -> Optional[NarrativeInsight]:
        return self._insights.get(content_hash)

    async def find_in_range(
        self,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[NarrativeInsight]:
        start, end = as_utc(start), as_utc(end)
        matches = sorted(
            (i for i in self._insights.values() if start <= as_utc(i.timestamp) < end),
            key=lambda i: i.timestamp,
            reverse=True,
        )
        matches = matches[max(skip, 0):]
        return matches if limit is None else matches[:limit]

    async def delete_older_than(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        async with self._lock:
            expired = [h for h, i in self._insights.items() if as_utc(i.expires_at) < cutoff]
            for content_hash in expired:
                del self._insights[content_hash]
        return len(expired)

    async def delete_by_content_hash(self, content_hash: str) -> bool:
        async with self._lock:
            return self._insights.pop(content_hash, None) is not None

    async def count(self) -> int:
        return len(self._insights)

    async def find_trends(self, timeframe: str) -> List[NarrativeTrend]:
        cached = self._trends.get(timeframe, {})
        return sorted(cached.values(), key=lambda t: t.narrative_score, reverse=True)

    async def save_trends(self, trends: Sequence[NarrativeTrend]) -> None:
        async with self._lock:
            for trend in trends:
                self._trends.setdefault(trend.timeframe, {}).setdefault(trend.primary_theme, trend)
