"""
Shared fixtures: a fixed-salt transform engine over an in-memory store,
a scriptable classification oracle and a canned-data connector.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from veritas.core.config import TransformConfig
from veritas.core.errors import FetchError, StorageError
from veritas.ml.nlp.classification import (
    ClassificationOracle,
    ContentClassification,
    EntityMention,
    SentimentResult,
)
from veritas.schemas.posts import EngagementMetrics, RawPost, SearchOptions
from veritas.services.connectors.base import BaseConnector
from veritas.services.store.memory_store import InMemoryInsightStore
from veritas.services.store.sql_store import SqlInsightStore
from veritas.services.transform.transform_service import TransformEngine

TEST_SALT = "pepper-for-tests"
FIXED_NOW = datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc)


class StubOracle(ClassificationOracle):
    """Returns a scripted classification per text, or a neutral default."""

    def __init__(self, scripted: Optional[Dict[str, ContentClassification]] = None, fail: bool = False):
        self.scripted = scripted or {}
        self.fail = fail
        self.calls = 0

    async def classify(self, text: str) -> ContentClassification:
        self.calls += 1
        if self.fail:
            raise RuntimeError("oracle offline")
        return self.scripted.get(text) or ContentClassification(
            sentiment=SentimentResult(score=0.5, label="positive", confidence=0.8),
            topics=["climate"],
            entities=[EntityMention(text="UN", type="organization", confidence=0.9)],
        )


def classification(themes: Sequence[str], score: float = 0.0) -> ContentClassification:
    label = "positive" if score > 0.2 else "negative" if score < -0.2 else "neutral"
    return ContentClassification(
        sentiment=SentimentResult(score=score, label=label, confidence=0.8),
        topics=list(themes),
    )


class StubConnector(BaseConnector):
    """Connector over an in-memory list of posts."""

    platform = "stub"
    default_poll_interval = 0.01

    def __init__(self, transform_engine, posts: Optional[List[RawPost]] = None,
                 platform: str = "stub", fail: bool = False, delay: float = 0.0, **kwargs):
        super().__init__(transform_engine, **kwargs)
        self.platform = platform
        self.posts = list(posts or [])
        self.fail = fail
        self.delay = delay
        self.polls = 0
        self.connect_calls = 0

    async def _connect_to_api(self) -> None:
        self.connect_calls += 1

    async def _search(self, query: str, options: SearchOptions) -> List[RawPost]:
        self.polls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise FetchError(self.platform, "upstream returned 503")
        return list(self.posts)

    async def _poll(self, keywords):
        return await self.search_content(" OR ".join(keywords))

    async def _fetch_author(self, author_id: str):
        return {"name": "Stub User", "credibility_score": 0.7, "verification_status": "verified"}

    async def _check_credentials(self) -> bool:
        return not self.fail


class FailingLookupStore(InMemoryInsightStore):
    """Memory store whose first ``failures`` content-hash lookups raise."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures

    async def find_by_content_hash(self, content_hash):
        if self.failures:
            self.failures -= 1
            raise StorageError("read timeout")
        return await super().find_by_content_hash(content_hash)


@pytest.fixture
def transform_config():
    return TransformConfig(hash_salt=TEST_SALT, retention_days=90)


@pytest.fixture
def store():
    return InMemoryInsightStore()


@pytest.fixture(params=["memory", "sqlite"])
async def backend(request, tmp_path):
    """Each InsightStore implementation; SQLite stands in for PostgreSQL."""
    if request.param == "memory":
        yield InMemoryInsightStore()
        return
    sql_store = SqlInsightStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'insights.db'}")
    await sql_store.init_schema()
    yield sql_store
    await sql_store.close()


@pytest.fixture
def oracle():
    return StubOracle()


@pytest.fixture
def engine(transform_config, oracle, store):
    return TransformEngine(transform_config, oracle, store, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_post():
    counter = {"n": 0}

    def factory(
        text: str = "Climate talks resume in Geneva",
        timestamp: Optional[datetime] = None,
        author_id: str = "author-42",
        platform: str = "twitter",
        likes: int = 10,
        shares: int = 5,
        comments: int = 5,
        reach: int = 100,
        post_id: Optional[str] = None,
    ) -> RawPost:
        counter["n"] += 1
        return RawPost(
            id=post_id or f"post-{counter['n']}",
            text=text,
            timestamp=timestamp or datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc),
            platform=platform,
            author_id=author_id,
            author_name="Jane Doe",
            engagement=EngagementMetrics(likes=likes, shares=shares, comments=comments, reach=reach),
        )

    return factory


@pytest.fixture
def make_insight(engine, make_post):
    """Build (not store) an insight with chosen themes and sentiment."""

    def factory(themes, score=0.0, author_id="author-1", platform="twitter", timestamp=None, text=None):
        post = make_post(
            text=text or f"{'/'.join(themes)} {author_id} {score} {timestamp}",
            author_id=author_id,
            platform=platform,
            timestamp=timestamp,
        )
        return engine.build_insight(post, classification(themes, score))

    return factory
