"""
Connector registry — explicit platform → connector map.

Connectors are registered by startup code; nothing is discovered
implicitly. A connector that fails credential validation is marked
unavailable and left out of orchestration until it revalidates.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from veritas.core.config import Settings
from veritas.core.errors import SourceConnectionError
from veritas.services.connectors.base import BaseConnector, ConnectionState
from veritas.services.transform.transform_service import TransformEngine

logger = logging.getLogger(__name__)


class ConnectorRegistry:

    def __init__(self):
        self._connectors: Dict[str, BaseConnector] = {}

    def register(self, connector: BaseConnector) -> None:
        if not connector.platform:
            raise ValueError(f"{type(connector).__name__} has no platform name")
        if connector.platform in self._connectors:
            raise ValueError(f"a connector for {connector.platform} is already registered")
        self._connectors[connector.platform] = connector
        logger.info(f"Registered connector: {connector.platform}")

    async def unregister(self, platform: str) -> Optional[BaseConnector]:
        connector = self._connectors.pop(platform, None)
        if connector is not None:
            await connector.disconnect()
        return connector

    def get(self, platform: str) -> Optional[BaseConnector]:
        return self._connectors.get(platform)

    @property
    def platforms(self) -> List[str]:
        return list(self._connectors)

    def all(self) -> List[BaseConnector]:
        return list(self._connectors.values())

    def available(self) -> List[BaseConnector]:
        return [c for c in self._connectors.values() if c.state != ConnectionState.UNAVAILABLE]

    def select(self, platforms: Optional[Iterable[str]] = None) -> List[BaseConnector]:
        """Available connectors, optionally restricted to ``platforms``."""
        if platforms is None:
            return self.available()
        wanted = set(platforms)
        unknown = wanted - set(self._connectors)
        if unknown:
            logger.warning(f"No connector registered for: {', '.join(sorted(unknown))}")
        return [c for c in self.available() if c.platform in wanted]

    async def validate_all(self) -> Dict[str, bool]:
        connectors = self.all()
        results = await asyncio.gather(*(c.validate_credentials() for c in connectors))
        status = {c.platform: ok for c, ok in zip(connectors, results)}
        for platform, ok in status.items():
            if not ok:
                logger.warning(f"Connector {platform} unavailable; excluded until revalidated")
        return status

    async def revalidate(self, platform: str) -> bool:
        connector = self._connectors.get(platform)
        if connector is None:
            return False
        ok = await connector.validate_credentials()
        logger.info(f"Connector {platform} revalidated: {'available' if ok else 'unavailable'}")
        return ok

    async def disconnect_all(self) -> None:
        for connector in self._connectors.values():
            try:
                await connector.disconnect()
            except SourceConnectionError as e:
                logger.error(f"Disconnect failed: {e}")


# ── Factory ──────────────────────────────────────────────────────────────

def _secret(value) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def build_connectors(settings: Settings, transform_engine: TransformEngine) -> List[BaseConnector]:
    """Instantiate every connector enabled in settings, credentials injected."""
    from veritas.services.connectors.facebook import FacebookConnector
    from veritas.services.connectors.reddit import RedditConnector
    from veritas.services.connectors.rss import RSSConnector
    from veritas.services.connectors.twitter import TwitterConnector
    from veritas.services.connectors.web_scraper import WebScraperConnector
    from veritas.services.connectors.youtube import YouTubeConnector

    http = {"timeout": settings.http_timeout_seconds, "user_agent": settings.http_user_agent}
    sources = settings.load_sources()
    factories = {
        "twitter": lambda: TwitterConnector(
            transform_engine,
            bearer_token=_secret(settings.twitter_bearer_token),
            poll_interval=settings.twitter_poll_interval, **http,
        ),
        "reddit": lambda: RedditConnector(
            transform_engine,
            client_id=settings.reddit_client_id,
            client_secret=_secret(settings.reddit_client_secret),
            username=settings.reddit_username,
            password=_secret(settings.reddit_password),
            poll_interval=settings.reddit_poll_interval, **http,
        ),
        "facebook": lambda: FacebookConnector(
            transform_engine,
            access_token=_secret(settings.facebook_access_token),
            page_id=settings.facebook_page_id,
            api_version=settings.facebook_api_version,
            poll_interval=settings.facebook_poll_interval, **http,
        ),
        "rss": lambda: RSSConnector(
            transform_engine, feeds=sources["rss_feeds"],
            poll_interval=settings.rss_poll_interval, **http,
        ),
        "youtube": lambda: YouTubeConnector(
            transform_engine,
            videos_per_search=settings.youtube_search_videos,
            comments_per_video=settings.youtube_comments_per_video,
            poll_interval=settings.youtube_poll_interval,
        ),
        "web": lambda: WebScraperConnector(
            transform_engine, configs=sources["scraper_configs"],
            poll_interval=settings.scraper_poll_interval, **http,
        ),
    }

    connectors = []
    for name in settings.enabled_connectors:
        factory = factories.get(name)
        if factory is None:
            logger.warning(f"Unknown connector in settings: {name}")
            continue
        connectors.append(factory())
    return connectors
