"""
Veritas Transform Engine — transform-on-ingest.

Responsibilities:
  - Classify raw post text through the classification oracle
  - Replace text and author identity with salted SHA-256 digests
  - Score engagement and narrative strength
  - Stamp processing time and retention expiry
  - Deduplicate by content hash before and during the store write
  - Batch mode: one oracle call, one store write, per-item failures

Raw posts never leave this module; only NarrativeInsight records reach the store.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from veritas.core.clock import as_utc, isoformat_z, utcnow
from veritas.core.config import TransformConfig
from veritas.core.errors import (
    ClassificationError, StorageError, TransformError, ValidationError, VeritasError,
)
from veritas.ml.nlp.classification import ClassificationOracle, ContentClassification
from veritas.schemas.posts import EngagementMetrics, RawPost
from veritas.schemas.schemas import (
    Engagement, InsightEntity, NarrativeInsight, Sentiment, SentimentLabel,
)
from veritas.services.store.base import InsightStore

logger = logging.getLogger(__name__)

# ── Scoring weights ──────────────────────────────────────────────────────

WEIGHT_ENGAGEMENT = 0.4
WEIGHT_ENTITIES = 0.2
WEIGHT_TOPICS = 0.2
WEIGHT_SENTIMENT = 0.2

SENTIMENT_LABELS = {label.value for label in SentimentLabel}


def _clamp(value: float, low: float, high: float) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


@dataclass
class BatchFailure:
    index: int
    post_id: Optional[str]
    error: VeritasError


@dataclass
class BatchOutcome:
    """Result of a batch transform: stored/known insights plus per-item failures."""
    insights: List[NarrativeInsight] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)
    stored: int = 0
    duplicates: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures


class TransformEngine:
    """Anonymizes and scores raw posts into narrative insights."""

    def __init__(
        self,
        config: TransformConfig,
        classifier: ClassificationOracle,
        store: InsightStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.classifier = classifier
        self.store = store
        self._clock = clock

    # ── Hashing ──────────────────────────────────────────────────────────

    def _digest(self, payload: str) -> str:
        return hashlib.sha256((payload + self.config.hash_salt).encode("utf-8")).hexdigest()

    def content_hash(self, text: str, timestamp: datetime) -> str:
        return self._digest(f"{text}|{isoformat_z(timestamp)}")

    def source_hash(self, author_id: str, platform: str) -> str:
        return self._digest(f"{author_id}|{platform}")

    # ── Scoring ──────────────────────────────────────────────────────────

    @staticmethod
    def engagement_score(metrics: EngagementMetrics) -> float:
        return _clamp(metrics.total / max(metrics.reach, 1), 0.0, 1.0)

    @staticmethod
    def engagement_breakdown(metrics: EngagementMetrics) -> Dict[str, float]:
        total = metrics.total
        if total <= 0:
            return {"likes": 0.0, "shares": 0.0, "comments": 0.0}
        return {
            "likes": max(metrics.likes, 0) / total,
            "shares": max(metrics.shares, 0) / total,
            "comments": max(metrics.comments, 0) / total,
        }

    @classmethod
    def narrative_score(cls, metrics: EngagementMetrics, classification: ContentClassification) -> float:
        confidences = [_clamp(e.confidence, 0.0, 1.0) for e in classification.entities]
        entity_score = sum(confidences) / len(confidences) if confidences else 0.0
        topic_score = 1.0 if classification.topics else 0.5
        sentiment_score = _clamp(abs(classification.sentiment.score), 0.0, 1.0)
        score = (
            cls.engagement_score(metrics) * WEIGHT_ENGAGEMENT
            + entity_score * WEIGHT_ENTITIES
            + topic_score * WEIGHT_TOPICS
            + sentiment_score * WEIGHT_SENTIMENT
        )
        return _clamp(score, 0.0, 1.0)

    # ── Building ─────────────────────────────────────────────────────────

    def build_insight(self, post: RawPost, classification: ContentClassification) -> NarrativeInsight:
        """Pure, synchronous transform of one post with a known classification."""
        if post.text is None or post.timestamp is None:
            raise TransformError("post is missing text or timestamp", post_id=post.id)
        if not post.author_id or not post.platform:
            raise TransformError("post is missing author or platform", post_id=post.id)
        try:
            timestamp = as_utc(post.timestamp)
            content_hash = self.content_hash(post.text, timestamp)
            source_hash = self.source_hash(str(post.author_id), post.platform)
            processed_at = as_utc(self._clock())
            metrics = post.engagement or EngagementMetrics()
        except (TypeError, ValueError, AttributeError) as e:
            raise TransformError(f"cannot hash post: {e}", post_id=post.id) from e

        sentiment = classification.sentiment
        label = sentiment.label if sentiment.label in SENTIMENT_LABELS else "neutral"
        themes = list(dict.fromkeys(t.strip().lower() for t in classification.topics if t and t.strip()))

        try:
            return NarrativeInsight(
                id=f"insight-{content_hash[:16]}",
                content_hash=content_hash,
                source_hash=source_hash,
                platform=post.platform,
                timestamp=timestamp,
                themes=themes,
                entities=[
                    InsightEntity(name=e.text, type=e.type, relevance=_clamp(e.confidence, 0.0, 1.0))
                    for e in classification.entities if e.text
                ],
                sentiment=Sentiment(
                    score=_clamp(sentiment.score, -1.0, 1.0),
                    label=label,
                    confidence=_clamp(sentiment.confidence, 0.0, 1.0),
                ),
                engagement=Engagement(
                    total=metrics.total,
                    breakdown=self.engagement_breakdown(metrics),
                ),
                narrative_score=self.narrative_score(metrics, classification),
                processed_at=processed_at,
                expires_at=processed_at + timedelta(days=self.config.retention_days),
            )
        except PydanticValidationError as e:
            raise ValidationError(f"insight for post {post.id} is malformed: {e}") from e
        except (TypeError, AttributeError) as e:
            raise TransformError(f"cannot score post: {e}", post_id=post.id) from e

    # ── Single ───────────────────────────────────────────────────────────

    async def transform(self, post: RawPost) -> NarrativeInsight:
        """Transform and persist one post. Returns the stored record for its content."""
        try:
            classification = await self.classifier.classify(post.text)
        except ClassificationError:
            raise
        except Exception as e:
            raise ClassificationError(f"classification failed for post {post.id}: {e}") from e

        insight = self.build_insight(post, classification)

        existing = await self.store.find_by_content_hash(insight.content_hash)
        if existing is not None:
            logger.debug(f"Duplicate content skipped: {insight.id}")
            return existing

        inserted = await self.store.save(insight)
        if not inserted:
            # Lost a race with a concurrent writer; the stored record wins.
            return await self.store.find_by_content_hash(insight.content_hash) or insight
        return insight

    # ── Batch ────────────────────────────────────────────────────────────

    async def transform_batch(self, posts: Sequence[RawPost]) -> BatchOutcome:
        outcome = BatchOutcome()
        if not posts:
            return outcome

        try:
            classifications = await self.classifier.batch_classify([p.text or "" for p in posts])
        except Exception as e:
            error = e if isinstance(e, ClassificationError) else ClassificationError(f"batch classification failed: {e}")
            logger.error(f"Batch classification failed for {len(posts)} posts: {e}")
            outcome.failures = [BatchFailure(i, p.id, error) for i, p in enumerate(posts)]
            return outcome

        if len(classifications) != len(posts):
            error = ClassificationError(
                f"oracle returned {len(classifications)} results for {len(posts)} posts"
            )
            outcome.failures = [BatchFailure(i, p.id, error) for i, p in enumerate(posts)]
            return outcome

        built: Dict[str, Tuple[int, NarrativeInsight]] = {}
        for index, (post, classification) in enumerate(zip(posts, classifications)):
            try:
                insight = self.build_insight(post, classification)
            except (TransformError, ValidationError) as e:
                logger.warning(f"Skipping post {post.id}: {e}")
                outcome.failures.append(BatchFailure(index, post.id, e))
                continue
            if insight.content_hash in built:
                outcome.duplicates += 1
                continue
            built[insight.content_hash] = (index, insight)

        fresh: List[Tuple[int, NarrativeInsight]] = []
        for content_hash, (index, insight) in built.items():
            try:
                existing = await self.store.find_by_content_hash(content_hash)
            except StorageError as e:
                logger.warning(f"Lookup failed for post {posts[index].id}: {e}")
                outcome.failures.append(BatchFailure(index, posts[index].id, e))
                continue
            if existing is not None:
                outcome.duplicates += 1
                outcome.insights.append(existing)
            else:
                fresh.append((index, insight))

        if fresh:
            outcome.stored = await self._store_batch(fresh, posts, outcome)
        return outcome

    async def _store_batch(
        self, fresh: List[Tuple[int, NarrativeInsight]], posts: Sequence[RawPost], outcome: BatchOutcome,
    ) -> int:
        try:
            stored = await self.store.save_many([insight for _, insight in fresh])
        except StorageError as e:
            logger.warning(f"Batch write of {len(fresh)} insights failed, retrying per item: {e}")
        else:
            if stored == len(fresh):
                outcome.insights.extend(insight for _, insight in fresh)
            else:
                # Some rows were written concurrently; return what the store holds.
                outcome.duplicates += len(fresh) - stored
                for _, insight in fresh:
                    outcome.insights.append(await self._stored_copy(insight))
            return stored

        stored = 0
        for index, insight in fresh:
            try:
                if await self.store.save(insight):
                    stored += 1
                    outcome.insights.append(insight)
                else:
                    outcome.duplicates += 1
                    outcome.insights.append(await self._stored_copy(insight))
            except StorageError as e:
                outcome.failures.append(BatchFailure(index, posts[index].id, e))
        return stored

    async def _stored_copy(self, insight: NarrativeInsight) -> NarrativeInsight:
        """The persisted record for ``insight``'s content, or ``insight`` if it cannot be read back."""
        try:
            return await self.store.find_by_content_hash(insight.content_hash) or insight
        except StorageError as e:
            logger.warning(f"Could not re-read stored insight {insight.id}: {e}")
            return insight
