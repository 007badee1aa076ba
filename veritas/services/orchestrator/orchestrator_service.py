"""
Veritas Orchestrator — multi-source fan-out / fan-in.

Responsibilities:
  - Concurrent search_and_transform across the selected connectors
  - Per-connector failure isolation (error or timeout → empty contribution, logged)
  - Merged insight stream across connectors; closing it closes every source stream
  - Source profile lookups routed to the owning connector
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

from veritas.core.errors import SourceConnectionError
from veritas.core.streams import EventStream
from veritas.schemas.posts import SearchOptions
from veritas.schemas.schemas import NarrativeInsight, SourceProfile
from veritas.services.connectors.base import BaseConnector
from veritas.services.connectors.registry import ConnectorRegistry

logger = logging.getLogger(__name__)

MERGED_SOURCE = "orchestrator"


class Orchestrator:

    def __init__(self, registry: ConnectorRegistry, timeout_seconds: Optional[float] = 60.0):
        self.registry = registry
        self.timeout_seconds = timeout_seconds

    # ── Pull ─────────────────────────────────────────────────────────────

    async def _search_one(
        self, connector: BaseConnector, query: str, options: Optional[SearchOptions],
    ) -> List[NarrativeInsight]:
        try:
            return await asyncio.wait_for(
                connector.search_and_transform(query, options), self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Search on {connector.platform} timed out after {self.timeout_seconds}s")
        except Exception as e:
            logger.error(f"Search on {connector.platform} failed: {e}")
        return []

    async def search_all_and_transform(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        platforms: Optional[Iterable[str]] = None,
    ) -> List[NarrativeInsight]:
        connectors = self.registry.select(platforms)
        if not connectors:
            logger.warning("No available connectors for search")
            return []

        results = await asyncio.gather(*(self._search_one(c, query, options) for c in connectors))
        insights = [insight for batch in results for insight in batch]
        insights.sort(key=lambda i: i.timestamp, reverse=True)
        logger.info(f"Search '{query}' returned {len(insights)} insights from {len(connectors)} connectors")
        return insights

    # ── Push ─────────────────────────────────────────────────────────────

    def stream_all_and_transform(
        self,
        keywords: Sequence[str],
        platforms: Optional[Iterable[str]] = None,
    ) -> EventStream:
        """Merge every selected connector's insight stream into one. Must run inside a loop."""
        merged = EventStream(source=MERGED_SOURCE)
        loop = asyncio.get_running_loop()
        live = 0

        for connector in self.registry.select(platforms):
            try:
                child = connector.stream_and_transform(keywords)
            except Exception as e:
                logger.error(f"Could not open stream on {connector.platform}: {e}")
                merged.publish_error(
                    SourceConnectionError(connector.platform, f"stream unavailable: {e}"),
                    source=connector.platform,
                )
                continue
            merged.adopt(child)
            merged.attach(loop.create_task(
                self._forward(child, merged), name=f"forward-{connector.platform}",
            ))
            live += 1

        remaining = live

        def on_forwarder_done(_task: asyncio.Task) -> None:
            nonlocal remaining
            remaining -= 1
            if remaining == 0:
                merged.finish()

        if live == 0:
            merged.finish()
        for task in merged.producers:
            task.add_done_callback(on_forwarder_done)

        logger.info(f"Merged stream {merged.subscription_id} over {live} connectors")
        return merged

    @staticmethod
    async def _forward(child: EventStream, merged: EventStream) -> None:
        async for event in child:
            merged.publish_event(event)

    # ── Sources ──────────────────────────────────────────────────────────

    async def get_source_details(self, author_id: str, platform: str) -> SourceProfile:
        connector = self.registry.get(platform)
        if connector is None:
            raise ValueError(f"no connector registered for {platform}")
        return await connector.get_author_details(author_id)
