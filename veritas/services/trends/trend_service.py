"""
Veritas Trend Aggregator

Groups stored insights of a timeframe into narrative trends:
  - One group per theme; an insight joins the group of every theme it carries
  - Groups need at least two insights
  - Related themes by co-occurrence, top five, own theme excluded
  - Distinct sources, mean sentiment, platform shares
  - Score = mean insight score plus a logarithmic volume boost (max 0.5), capped at 1

Computed sets are cached in the store per exact timeframe label; a cached
set is returned as is.
"""
from __future__ import annotations

import hashlib
import logging
import math
from collections import Counter, defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Sequence

from pydantic import ValidationError as PydanticValidationError

from veritas.core.clock import utcnow
from veritas.core.errors import ValidationError
from veritas.schemas.schemas import NarrativeInsight, NarrativeTrend
from veritas.services.trends.timeframe import parse_timeframe

logger = logging.getLogger(__name__)

MIN_GROUP_SIZE = 2
RELATED_THEMES_LIMIT = 5
MAX_VOLUME_BOOST = 0.5


def trend_id(timeframe: str, theme: str) -> str:
    """Stable key for a (timeframe, theme) pair."""
    digest = hashlib.sha256(f"{timeframe}|{theme}".encode("utf-8")).hexdigest()
    return f"trend-{digest[:32]}"


def volume_boost(count: int) -> float:
    if count <= 0:
        return 0.0
    return min(math.log10(count) / 2, MAX_VOLUME_BOOST)


class TrendAggregator:

    def __init__(self, store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    async def get_trends_by_timeframe(self, timeframe: str) -> List[NarrativeTrend]:
        cached = await self.store.find_trends(timeframe)
        if cached:
            logger.debug(f"Trend cache hit for {timeframe}")
            return cached

        window = parse_timeframe(timeframe, now=self._clock())
        insights = await self.store.find_in_range(window.start, window.end)
        if not insights:
            return []

        trends = self.compute_trends(insights, timeframe)
        if trends:
            await self.store.save_trends(trends)
            logger.info(f"Computed {len(trends)} trends for {timeframe} from {len(insights)} insights")
        return trends

    def compute_trends(self, insights: Sequence[NarrativeInsight], timeframe: str) -> List[NarrativeTrend]:
        groups: Dict[str, List[NarrativeInsight]] = defaultdict(list)
        for insight in insights:
            for theme in dict.fromkeys(insight.themes):
                groups[theme].append(insight)

        detected_at = self._clock()
        trends = [
            self._build_trend(theme, members, timeframe, detected_at)
            for theme, members in groups.items()
            if len(members) >= MIN_GROUP_SIZE
        ]
        trends.sort(key=lambda t: (-t.narrative_score, -t.insight_count, t.primary_theme))
        return trends

    @staticmethod
    def related_themes(theme: str, members: Sequence[NarrativeInsight]) -> List[str]:
        co_occurrence: Counter = Counter()
        for insight in members:
            for other in dict.fromkeys(insight.themes):
                if other != theme:
                    co_occurrence[other] += 1
        return [name for name, _ in co_occurrence.most_common(RELATED_THEMES_LIMIT)]

    @staticmethod
    def platform_distribution(members: Sequence[NarrativeInsight]) -> Dict[str, float]:
        counts = Counter(i.platform for i in members)
        total = sum(counts.values())
        return {platform: count / total for platform, count in counts.items()}

    def _build_trend(
        self,
        theme: str,
        members: List[NarrativeInsight],
        timeframe: str,
        detected_at: datetime,
    ) -> NarrativeTrend:
        count = len(members)
        mean_score = sum(i.narrative_score for i in members) / count
        try:
            return NarrativeTrend(
                id=trend_id(timeframe, theme),
                timeframe=timeframe,
                primary_theme=theme,
                related_themes=self.related_themes(theme, members),
                insight_count=count,
                unique_sources_count=len({i.source_hash for i in members}),
                sentiment_trend=sum(i.sentiment.score for i in members) / count,
                platform_distribution=self.platform_distribution(members),
                narrative_score=min(mean_score + volume_boost(count), 1.0),
                detected_at=detected_at,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"trend for theme {theme!r} is malformed: {e}") from e
