"""
SQL-backed InsightStore (SQLAlchemy 2.0 async).

Uniqueness of ``content_hash`` is enforced by a unique index and every
insert is ``INSERT ... ON CONFLICT DO NOTHING``, so concurrent ingestion of
identical content from two sources leaves one row. Supported dialects:
PostgreSQL (asyncpg) and SQLite (aiosqlite).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from veritas.core.clock import as_utc
from veritas.core.database import create_engine, create_session_factory, init_db
from veritas.core.errors import StorageError, ValidationError
from veritas.models.models import InsightRecord, TrendRecord
from veritas.schemas.schemas import NarrativeInsight, NarrativeTrend
from veritas.services.store.base import InsightStore

logger = logging.getLogger(__name__)

INSERT_CHUNK_SIZE = 500


# ── Row mapping ──────────────────────────────────────────────────────────

def insight_to_row(insight: NarrativeInsight) -> Dict[str, Any]:
    return {
        "id": insight.id,
        "content_hash": insight.content_hash,
        "source_hash": insight.source_hash,
        "platform": insight.platform,
        "timestamp": as_utc(insight.timestamp),
        "themes": list(insight.themes),
        "entities": [e.model_dump() for e in insight.entities],
        "sentiment_score": insight.sentiment.score,
        "sentiment_label": insight.sentiment.label.value,
        "sentiment_confidence": insight.sentiment.confidence,
        "engagement_total": insight.engagement.total,
        "engagement_breakdown": dict(insight.engagement.breakdown),
        "narrative_score": insight.narrative_score,
        "processed_at": as_utc(insight.processed_at),
        "expires_at": as_utc(insight.expires_at),
    }


def row_to_insight(row: InsightRecord) -> NarrativeInsight:
    try:
        return NarrativeInsight(
            id=row.id,
            content_hash=row.content_hash,
            source_hash=row.source_hash,
            platform=row.platform,
            timestamp=as_utc(row.timestamp),
            themes=row.themes or [],
            entities=row.entities or [],
            sentiment={
                "score": row.sentiment_score,
                "label": row.sentiment_label,
                "confidence": row.sentiment_confidence,
            },
            engagement={"total": row.engagement_total, "breakdown": row.engagement_breakdown or {}},
            narrative_score=row.narrative_score,
            processed_at=as_utc(row.processed_at),
            expires_at=as_utc(row.expires_at),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"stored insight {row.id} is malformed: {e}") from e


def trend_to_row(trend: NarrativeTrend) -> Dict[str, Any]:
    row = trend.model_dump()
    row["detected_at"] = as_utc(trend.detected_at)
    return row


def row_to_trend(row: TrendRecord) -> NarrativeTrend:
    try:
        return NarrativeTrend(
            id=row.id,
            timeframe=row.timeframe,
            primary_theme=row.primary_theme,
            related_themes=row.related_themes or [],
            insight_count=row.insight_count,
            unique_sources_count=row.unique_sources_count,
            sentiment_trend=row.sentiment_trend,
            platform_distribution=row.platform_distribution or {},
            narrative_score=row.narrative_score,
            detected_at=as_utc(row.detected_at),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"stored trend {row.id} is malformed: {e}") from e


class SqlInsightStore(InsightStore):

    def __init__(self, engine: AsyncEngine, session_factory: Optional[async_sessionmaker] = None):
        self.engine = engine
        self.session_factory = session_factory or create_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlInsightStore":
        return cls(create_engine(database_url, echo=echo))

    async def init_schema(self) -> None:
        try:
            await init_db(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"schema initialization failed: {e}") from e

    def _insert(self, model):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise StorageError(f"unsupported database dialect: {dialect}")
        return insert(model)

    # ── Insights ─────────────────────────────────────────────────────────

    async def save(self, insight: NarrativeInsight) -> bool:
        stmt = (
            self._insert(InsightRecord)
            .values(**insight_to_row(insight))
            .on_conflict_do_nothing()
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to save insight {insight.id}: {e}") from e
        return result.rowcount == 1

    async def save_many(self, insights: Sequence[NarrativeInsight]) -> int:
        rows = [insight_to_row(i) for i in insights]
        if not rows:
            return 0
        inserted = 0
        try:
            async with self.session_factory() as session:
                for offset in range(0, len(rows), INSERT_CHUNK_SIZE):
                    stmt = (
                        self._insert(InsightRecord)
                        .values(rows[offset:offset + INSERT_CHUNK_SIZE])
                        .on_conflict_do_nothing()
                    )
                    result = await session.execute(stmt)
                    inserted += max(result.rowcount, 0)
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to save batch of {len(rows)} insights: {e}") from e
        logger.debug(f"Stored {inserted}/{len(rows)} insights")
        return inserted

    async def find_by_content_hash(self, content_hash: str) -> Optional[NarrativeInsight]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(InsightRecord).where(InsightRecord.content_hash == content_hash)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"lookup by content hash failed: {e}") from e
        return row_to_insight(row) if row is not None else None

    async def find_in_range(
        self,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[NarrativeInsight]:
        query = (
            select(InsightRecord)
            .where(InsightRecord.timestamp >= as_utc(start), InsightRecord.timestamp < as_utc(end))
            .order_by(InsightRecord.timestamp.desc())
            .offset(max(skip, 0))
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"range query failed: {e}") from e
        return [row_to_insight(r) for r in rows]

    async def delete_older_than(self, cutoff: datetime) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(InsightRecord).where(InsightRecord.expires_at < as_utc(cutoff))
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"retention delete failed: {e}") from e
        return result.rowcount

    async def delete_by_content_hash(self, content_hash: str) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(InsightRecord).where(InsightRecord.content_hash == content_hash)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"delete failed: {e}") from e
        return result.rowcount > 0

    async def count(self) -> int:
        try:
            async with self.session_factory() as session:
                return (await session.execute(select(func.count(InsightRecord.id)))).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"count failed: {e}") from e

    # ── Trends ───────────────────────────────────────────────────────────

    async def find_trends(self, timeframe: str) -> List[NarrativeTrend]:
        try:
            async with self.session_factory() as session:
                rows = (await session.execute(
                    select(TrendRecord)
                    .where(TrendRecord.timeframe == timeframe)
                    .order_by(TrendRecord.narrative_score.desc())
                )).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"trend lookup failed: {e}") from e
        return [row_to_trend(r) for r in rows]

    async def save_trends(self, trends: Sequence[NarrativeTrend]) -> None:
        rows = [trend_to_row(t) for t in trends]
        if not rows:
            return
        stmt = (
            self._insert(TrendRecord)
            .values(rows)
            .on_conflict_do_nothing()
        )
        try:
            async with self.session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"failed to cache {len(rows)} trends: {e}") from e

    async def close(self) -> None:
        await self.engine.dispose()
