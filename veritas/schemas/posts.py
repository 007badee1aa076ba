"""
Ephemeral ingestion types. Nothing in this module is ever persisted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from veritas.core.clock import as_utc


@dataclass
class EngagementMetrics:
    likes: int = 0
    shares: int = 0
    comments: int = 0
    reach: int = 0
    virality_score: float = 0.0

    @property
    def total(self) -> int:
        return max(self.likes, 0) + max(self.shares, 0) + max(self.comments, 0)

    @classmethod
    def from_counts(
        cls, likes: int = 0, shares: int = 0, comments: int = 0, reach: int = 0, share_weight: float = 1.0,
    ) -> "EngagementMetrics":
        likes, shares, comments, reach = (int(v or 0) for v in (likes, shares, comments, reach))
        virality = (likes + shares * share_weight + comments) / reach if reach > 0 else 0.0
        return cls(likes=likes, shares=shares, comments=comments, reach=reach, virality_score=virality)


@dataclass
class RawPost:
    """A post as fetched from a source, before anonymization."""
    id: str
    text: str
    timestamp: datetime
    platform: str
    author_id: str
    author_name: Optional[str] = None
    url: Optional[str] = None
    engagement: EngagementMetrics = field(default_factory=EngagementMetrics)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchOptions:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = None

    def accepts(self, timestamp: datetime) -> bool:
        timestamp = as_utc(timestamp)
        if self.start_date is not None and timestamp < as_utc(self.start_date):
            return False
        if self.end_date is not None and timestamp > as_utc(self.end_date):
            return False
        return True
