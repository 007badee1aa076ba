"""
Veritas Source Connector contract.

Every source adapter exposes the same surface:
  - connect / disconnect (idempotent; disconnect closes every owned stream)
  - search_content: pull model
  - stream_content: push model, backed by a polling task per subscription
  - search_and_transform / stream_and_transform: the same, emitting
    anonymized NarrativeInsights through the transform engine
  - get_author_details: source-level profile with the author id hashed
  - validate_credentials: never raises

Adapters implement the ``_connect_to_api`` / ``_disconnect_from_api`` /
``_search`` / ``_fetch_author`` / ``_check_credentials`` hooks.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set

from veritas.core.clock import utcnow
from veritas.core.errors import FetchError, SourceConnectionError, StorageError, VeritasError
from veritas.core.streams import EventStream
from veritas.schemas.posts import RawPost, SearchOptions
from veritas.schemas.schemas import NarrativeInsight, SourceProfile
from veritas.services.transform.transform_service import TransformEngine

logger = logging.getLogger(__name__)

SEEN_BUFFER_SIZE = 1000


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    UNAVAILABLE = "unavailable"


def matches_keywords(text: str, keywords: Sequence[str]) -> bool:
    """Case-insensitive: any keyword present. No keywords matches everything."""
    if not keywords:
        return True
    lowered = (text or "").lower()
    return any(k.lower() in lowered for k in keywords if k)


def clamp_credibility(*terms: float) -> float:
    return round(max(0.0, min(sum(terms), 1.0)), 4)


class _SeenSet:
    """Bounded set of emitted item ids, oldest evicted first."""

    def __init__(self, maxlen: int = SEEN_BUFFER_SIZE):
        self._order: Deque[str] = deque()
        self._items: Set[str] = set()
        self._maxlen = maxlen

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def add(self, key: str) -> bool:
        if key in self._items:
            return False
        self._order.append(key)
        self._items.add(key)
        if len(self._order) > self._maxlen:
            self._items.discard(self._order.popleft())
        return True


class BaseConnector(ABC):
    platform: str = ""
    default_poll_interval: float = 60.0
    stream_lookback: timedelta = timedelta(hours=1)

    def __init__(self, transform_engine: TransformEngine, poll_interval: Optional[float] = None):
        self.transform_engine = transform_engine
        self.poll_interval = poll_interval if poll_interval is not None else self.default_poll_interval
        self.state = ConnectionState.DISCONNECTED
        self._streams: Dict[str, EventStream] = {}

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def active_streams(self) -> Dict[str, EventStream]:
        return dict(self._streams)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def connect(self) -> None:
        if self.is_connected:
            return
        try:
            await self._connect_to_api()
        except SourceConnectionError:
            raise
        except Exception as e:
            raise SourceConnectionError(self.platform, f"connect failed: {e}") from e
        self.state = ConnectionState.CONNECTED
        logger.info(f"Connected to {self.platform}")

    async def disconnect(self) -> None:
        for stream in list(self._streams.values()):
            stream.close()
        self._streams.clear()

        if self.state == ConnectionState.DISCONNECTED:
            return
        try:
            await self._disconnect_from_api()
        except Exception as e:
            raise SourceConnectionError(self.platform, f"disconnect failed: {e}") from e
        finally:
            self.state = ConnectionState.DISCONNECTED
        logger.info(f"Disconnected from {self.platform}")

    async def _ensure_connected(self) -> None:
        if not self.is_connected:
            await self.connect()

    # ── Pull ─────────────────────────────────────────────────────────────

    async def search_content(self, query: str, options: Optional[SearchOptions] = None) -> List[RawPost]:
        options = options or SearchOptions()
        await self._ensure_connected()
        try:
            posts = await self._search(query, options)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(self.platform, f"search failed: {e}") from e
        posts = [p for p in posts if options.accepts(p.timestamp)]
        if options.limit is not None:
            posts = posts[:options.limit]
        return posts

    async def search_and_transform(
        self, query: str, options: Optional[SearchOptions] = None,
    ) -> List[NarrativeInsight]:
        posts = await self.search_content(query, options)
        if not posts:
            return []
        outcome = await self.transform_engine.transform_batch(posts)
        for failure in outcome.failures:
            logger.warning(f"{self.platform}: post {failure.post_id} not transformed: {failure.error}")
        return outcome.insights

    # ── Push ─────────────────────────────────────────────────────────────

    def stream_content(self, keywords: Sequence[str]) -> EventStream:
        """Poll for new posts matching ``keywords``. Must be called inside a running loop."""
        async def emit(stream: EventStream, posts: List[RawPost]) -> Iterable[str]:
            for post in posts:
                stream.publish(post)
            return [p.id for p in posts]

        return self._open_stream(keywords, emit)

    def stream_and_transform(self, keywords: Sequence[str]) -> EventStream:
        """Poll for new posts and emit their NarrativeInsights.

        Posts that failed on a storage error are not marked seen, so the
        next poll retries them.
        """
        async def emit(stream: EventStream, posts: List[RawPost]) -> Iterable[str]:
            outcome = await self.transform_engine.transform_batch(posts)
            for insight in outcome.insights:
                stream.publish(insight)
            retry = set()
            for failure in outcome.failures:
                stream.publish_error(failure.error)
                if isinstance(failure.error, StorageError):
                    retry.add(failure.post_id)
            return [p.id for p in posts if p.id not in retry]

        return self._open_stream(keywords, emit)

    def _open_stream(
        self,
        keywords: Sequence[str],
        emit: Callable[[EventStream, List[RawPost]], Awaitable[Iterable[str]]],
    ) -> EventStream:
        """Start a polling stream. ``emit`` publishes a batch and returns the ids it settled."""
        keywords = [k for k in keywords if k]
        stream = EventStream(
            source=self.platform,
            on_close=lambda: self._streams.pop(stream.subscription_id, None),
        )
        seen = _SeenSet()

        async def poll_loop() -> None:
            while True:
                try:
                    posts = await self._poll(keywords)
                    fresh: Dict[str, RawPost] = {}
                    for p in posts:
                        if p.id not in seen and p.id not in fresh and matches_keywords(p.text, keywords):
                            fresh[p.id] = p
                    if fresh:
                        for post_id in await emit(stream, list(fresh.values())):
                            seen.add(post_id)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    error = e if isinstance(e, VeritasError) else FetchError(self.platform, f"poll failed: {e}")
                    logger.error(f"Stream poll failed for {self.platform}: {e}")
                    stream.publish_error(error)
                await asyncio.sleep(self.poll_interval)

        task = asyncio.get_running_loop().create_task(
            poll_loop(), name=f"{self.platform}-stream-{stream.subscription_id[:8]}",
        )
        stream.attach(task)
        self._streams[stream.subscription_id] = stream
        logger.info(f"Opened {self.platform} stream {stream.subscription_id} for {len(keywords)} keywords")
        return stream

    async def _poll(self, keywords: Sequence[str]) -> List[RawPost]:
        """One polling round. Default: a search over the recent lookback window."""
        query = " OR ".join(keywords)
        return await self.search_content(query, SearchOptions(start_date=utcnow() - self.stream_lookback))

    # ── Sources ──────────────────────────────────────────────────────────

    async def get_author_details(self, author_id: str) -> SourceProfile:
        await self._ensure_connected()
        try:
            details = await self._fetch_author(author_id)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(self.platform, f"author lookup failed: {e}") from e
        return SourceProfile(
            source_hash=self.transform_engine.source_hash(author_id, self.platform),
            platform=self.platform,
            name=details.get("name"),
            credibility_score=details.get("credibility_score", 0.5),
            verification_status=details.get("verification_status", "unverified"),
            metadata=details.get("metadata", {}),
        )

    async def validate_credentials(self) -> bool:
        try:
            await self.connect()
            valid = bool(await self._check_credentials())
        except Exception as e:
            logger.warning(f"Credential validation failed for {self.platform}: {e}")
            self.state = ConnectionState.UNAVAILABLE
            return False
        if not valid:
            self.state = ConnectionState.UNAVAILABLE
        return valid

    # ── Adapter hooks ────────────────────────────────────────────────────

    @abstractmethod
    async def _connect_to_api(self) -> None:
        ...

    async def _disconnect_from_api(self) -> None:
        pass

    @abstractmethod
    async def _search(self, query: str, options: SearchOptions) -> List[RawPost]:
        ...

    @abstractmethod
    async def _fetch_author(self, author_id: str) -> Dict[str, Any]:
        """Return name, credibility_score, verification_status and metadata."""

    @abstractmethod
    async def _check_credentials(self) -> bool:
        """A minimal read against the upstream API."""
