"""
Veritas Schemas — Pydantic v2 models for the anonymized, persisted records.

NarrativeInsight and NarrativeTrend are frozen: once built they are never
mutated, only replaced or deleted.
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

HEX_DIGEST_PATTERN = r"^[0-9a-f]{64}$"


class Platform(str, enum.Enum):
    TWITTER = "twitter"
    REDDIT = "reddit"
    FACEBOOK = "facebook"
    RSS = "rss"
    YOUTUBE = "youtube"
    WEB = "web"


class SentimentLabel(str, enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


# ═══════════════════════════════════════════════════════════════════════
# Insights
# ═══════════════════════════════════════════════════════════════════════

class Sentiment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(..., ge=-1.0, le=1.0)
    label: SentimentLabel
    confidence: float = Field(..., ge=0.0, le=1.0)


class InsightEntity(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    type: str
    relevance: float = Field(..., ge=0.0, le=1.0)


class Engagement(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = Field(..., ge=0)
    breakdown: Dict[str, float] = {}

    @field_validator("breakdown")
    @classmethod
    def _fractions(cls, v: Dict[str, float]) -> Dict[str, float]:
        if any(share < 0.0 or share > 1.0 for share in v.values()):
            raise ValueError("engagement shares must lie in [0, 1]")
        if sum(v.values()) > 1.0 + 1e-9:
            raise ValueError("engagement shares must sum to at most 1")
        return v


class NarrativeInsight(BaseModel):
    """One anonymized record derived from exactly one raw post."""
    model_config = ConfigDict(frozen=True)

    id: str
    content_hash: str = Field(..., pattern=HEX_DIGEST_PATTERN)
    source_hash: str = Field(..., pattern=HEX_DIGEST_PATTERN)
    platform: str = Field(..., min_length=1)
    timestamp: datetime
    themes: List[str] = []
    entities: List[InsightEntity] = []
    sentiment: Sentiment
    engagement: Engagement
    narrative_score: float = Field(..., ge=0.0, le=1.0)
    processed_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _expiry_after_processing(self) -> "NarrativeInsight":
        if self.expires_at <= self.processed_at:
            raise ValueError("expires_at must be later than processed_at")
        return self


# ═══════════════════════════════════════════════════════════════════════
# Trends
# ═══════════════════════════════════════════════════════════════════════

class NarrativeTrend(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timeframe: str
    primary_theme: str = Field(..., min_length=1)
    related_themes: List[str] = Field(default_factory=list, max_length=5)
    insight_count: int = Field(..., ge=2)
    unique_sources_count: int = Field(..., ge=1)
    sentiment_trend: float = Field(..., ge=-1.0, le=1.0)
    platform_distribution: Dict[str, float]
    narrative_score: float = Field(..., ge=0.0, le=1.0)
    detected_at: datetime

    @model_validator(mode="after")
    def _check_shape(self) -> "NarrativeTrend":
        if self.primary_theme in self.related_themes:
            raise ValueError("related_themes must not repeat the primary theme")
        if self.platform_distribution and abs(sum(self.platform_distribution.values()) - 1.0) > 1e-6:
            raise ValueError("platform_distribution must sum to 1.0")
        return self


# ═══════════════════════════════════════════════════════════════════════
# Sources
# ═══════════════════════════════════════════════════════════════════════

class SourceProfile(BaseModel):
    """Source-level metadata. The raw author id is replaced by its salted hash."""
    source_hash: str = Field(..., pattern=HEX_DIGEST_PATTERN)
    platform: str
    name: Optional[str] = None
    credibility_score: float = Field(0.5, ge=0.0, le=1.0)
    verification_status: str = "unverified"
    metadata: Dict[str, Any] = {}
