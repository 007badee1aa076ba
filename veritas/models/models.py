"""
Veritas ORM Models — durable storage for anonymized records only.

There is deliberately no table for raw posts or author identities.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from veritas.core.database import Base


class InsightRecord(Base):
    __tablename__ = "narrative_insights"
    __table_args__ = (
        Index("ix_insights_content_hash", "content_hash", unique=True),
        Index("ix_insights_source_hash", "source_hash"),
        Index("ix_insights_timestamp", "timestamp"),
        Index("ix_insights_expires_at", "expires_at"),
        Index("ix_insights_platform", "platform"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(64))
    source_hash: Mapped[str] = mapped_column(String(64))
    platform: Mapped[str] = mapped_column(String(64))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    themes: Mapped[list] = mapped_column(JSON, default=list)
    entities: Mapped[list] = mapped_column(JSON, default=list)
    sentiment_score: Mapped[float] = mapped_column(Float, default=0.0)
    sentiment_label: Mapped[str] = mapped_column(String(16), default="neutral")
    sentiment_confidence: Mapped[float] = mapped_column(Float, default=0.5)
    engagement_total: Mapped[int] = mapped_column(Integer, default=0)
    engagement_breakdown: Mapped[dict] = mapped_column(JSON, default=dict)
    narrative_score: Mapped[float] = mapped_column(Float, default=0.0)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TrendRecord(Base):
    __tablename__ = "narrative_trends"
    __table_args__ = (
        Index("ix_trends_timeframe_theme", "timeframe", "primary_theme", unique=True),
    )

    id: Mapped[str] = mapped_column(String(256), primary_key=True)
    timeframe: Mapped[str] = mapped_column(String(32))
    primary_theme: Mapped[str] = mapped_column(String(128))
    related_themes: Mapped[list] = mapped_column(JSON, default=list)
    insight_count: Mapped[int] = mapped_column(Integer)
    unique_sources_count: Mapped[int] = mapped_column(Integer)
    sentiment_trend: Mapped[float] = mapped_column(Float)
    platform_distribution: Mapped[dict] = mapped_column(JSON, default=dict)
    narrative_score: Mapped[float] = mapped_column(Float)
    detected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
