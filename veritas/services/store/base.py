"""
Insight Store — the repository contract the ingestion core depends on.

Backends must enforce uniqueness of ``content_hash`` themselves: ``save`` is
an atomic insert-or-ignore, so two concurrent writers of the same content
leave exactly one record.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from veritas.schemas.schemas import NarrativeInsight, NarrativeTrend
from veritas.services.trends.timeframe import parse_timeframe


class InsightStore(ABC):

    # ── Insights ─────────────────────────────────────────────────────────

    @abstractmethod
    async def save(self, insight: NarrativeInsight) -> bool:
        """Insert unless the content hash exists. Returns True when inserted."""

    @abstractmethod
    async def save_many(self, insights: Sequence[NarrativeInsight]) -> int:
        """Insert-or-ignore a batch in one write. Returns the number inserted."""

    @abstractmethod
    async def find_by_content_hash(self, content_hash: str) -> Optional[NarrativeInsight]:
        ...

    @abstractmethod
    async def find_in_range(
        self,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[NarrativeInsight]:
        """Insights with ``start <= timestamp < end``, newest first."""

    async def find_by_timeframe(
        self,
        timeframe: str,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[NarrativeInsight]:
        window = parse_timeframe(timeframe)
        return await self.find_in_range(window.start, window.end, limit=limit, skip=skip)

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete insights whose ``expires_at`` is before ``cutoff``. Returns the count."""

    @abstractmethod
    async def delete_by_content_hash(self, content_hash: str) -> bool:
        """Administrative deletion of one insight."""

    @abstractmethod
    async def count(self) -> int:
        ...

    # ── Trends ───────────────────────────────────────────────────────────

    @abstractmethod
    async def find_trends(self, timeframe: str) -> List[NarrativeTrend]:
        """Cached trends stored for this exact timeframe label."""

    @abstractmethod
    async def save_trends(self, trends: Sequence[NarrativeTrend]) -> None:
        """Cache trends; an existing (timeframe, theme) entry is kept."""

    async def get_trends_by_timeframe(self, timeframe: str) -> List[NarrativeTrend]:
        from veritas.services.trends.trend_service import TrendAggregator

        return await TrendAggregator(self).get_trends_by_timeframe(timeframe)

    async def close(self) -> None:
        pass
