"""
Veritas Celery Worker Tasks

Periodic task definitions for:
- Retention reaping (daily)
- Scheduled keyword search cycles across all connectors
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from celery import Celery

from veritas.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# ── Celery App ───────────────────────────────────────────────────────────

celery_app = Celery(
    "veritas",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=1800,
    task_time_limit=3600,
    task_default_queue="default",
    task_routes={
        "veritas.workers.tasks.reap_expired_insights_task": {"queue": "maintenance"},
        "veritas.workers.tasks.search_cycle_task": {"queue": "ingestion"},
    },
)

# ── Periodic Tasks ───────────────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    "reap-expired-insights": {
        "task": "veritas.workers.tasks.reap_expired_insights_task",
        "schedule": float(settings.retention_reap_interval_seconds),
    },
    "search-cycle": {
        "task": "veritas.workers.tasks.search_cycle_task",
        "schedule": float(settings.search_cycle_interval_seconds),
    },
}


# ── Helpers ──────────────────────────────────────────────────────────────

def run_async(coro):
    """Run an async coroutine from sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _build_store():
    from veritas.services.store.sql_store import SqlInsightStore
    return SqlInsightStore.from_url(settings.database_url)


async def _reap() -> int:
    from veritas.services.transform.reaper import RetentionReaper

    store = _build_store()
    try:
        return await RetentionReaper(store).run_once()
    finally:
        await store.close()


async def _search_cycle(queries: List[str], platforms: Optional[List[str]]) -> int:
    from veritas.main import create_pipeline, shutdown_pipeline

    pipeline = await create_pipeline(settings, store=_build_store())
    try:
        total = 0
        for query in queries:
            insights = await pipeline.orchestrator.search_all_and_transform(query, platforms=platforms)
            total += len(insights)
        return total
    finally:
        await shutdown_pipeline(pipeline)


# ── Tasks ────────────────────────────────────────────────────────────────

@celery_app.task(
    name="veritas.workers.tasks.reap_expired_insights_task",
    bind=True,
    max_retries=3,
)
def reap_expired_insights_task(self):
    """Delete every insight whose retention window has passed."""
    try:
        deleted = run_async(_reap())
        logger.info(f"Reaped {deleted} expired insights")
        return deleted
    except Exception as exc:
        logger.error(f"Retention reap failed: {exc}")
        raise self.retry(exc=exc, countdown=300 * (2 ** self.request.retries))


@celery_app.task(name="veritas.workers.tasks.search_cycle_task")
def search_cycle_task(queries: Optional[List[str]] = None, platforms: Optional[List[str]] = None):
    """Run the configured keyword searches across all available connectors."""
    queries = queries or settings.search_cycle_queries
    if not queries:
        logger.info("Search cycle skipped: no queries configured")
        return 0
    try:
        total = run_async(_search_cycle(queries, platforms))
        logger.info(f"Search cycle ingested {total} insights for {len(queries)} queries")
        return total
    except Exception as e:
        logger.error(f"Search cycle failed: {e}")
        raise
