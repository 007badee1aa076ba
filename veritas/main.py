"""
Veritas — pipeline bootstrap.

Wires configuration, store, classifier, transform engine, connectors,
orchestrator and retention reaper together. An outer service layer
(HTTP/GraphQL) consumes the resulting Pipeline.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import structlog

from veritas.core.config import Settings, TransformConfig, get_settings
from veritas.ml.nlp.classification import ClassificationOracle, KeywordClassifier
from veritas.services.connectors.registry import ConnectorRegistry, build_connectors
from veritas.services.orchestrator.orchestrator_service import Orchestrator
from veritas.services.store.base import InsightStore
from veritas.services.store.sql_store import SqlInsightStore
from veritas.services.transform.reaper import RetentionReaper
from veritas.services.transform.transform_service import TransformEngine

# ── Logging ──────────────────────────────────────────────────────────────


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=logging.getLevelName(level.upper()), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


logger = structlog.get_logger()


# ── Pipeline ─────────────────────────────────────────────────────────────

@dataclass
class Pipeline:
    settings: Settings
    store: InsightStore
    engine: TransformEngine
    registry: ConnectorRegistry
    orchestrator: Orchestrator
    reaper: RetentionReaper


async def create_pipeline(
    settings: Optional[Settings] = None,
    store: Optional[InsightStore] = None,
    classifier: Optional[ClassificationOracle] = None,
    validate: bool = True,
) -> Pipeline:
    """Build and start the pipeline. Raises ConfigurationError without a salt."""
    settings = settings or get_settings()
    config = TransformConfig.from_settings(settings)

    if store is None:
        sql_store = SqlInsightStore.from_url(settings.database_url, echo=settings.database_echo)
        await sql_store.init_schema()
        store = sql_store

    engine = TransformEngine(config, classifier or KeywordClassifier(), store)

    registry = ConnectorRegistry()
    for connector in build_connectors(settings, engine):
        registry.register(connector)
    if validate:
        status = await registry.validate_all()
        logger.info("Connectors validated", **status)

    reaper = RetentionReaper(store, interval_seconds=settings.retention_reap_interval_seconds)
    reaper.start()

    logger.info(
        "Veritas ready",
        version=settings.app_version,
        connectors=registry.platforms,
        retention_days=config.retention_days,
    )
    return Pipeline(
        settings=settings,
        store=store,
        engine=engine,
        registry=registry,
        orchestrator=Orchestrator(registry, timeout_seconds=settings.orchestrator_timeout_seconds),
        reaper=reaper,
    )


async def shutdown_pipeline(pipeline: Pipeline) -> None:
    await pipeline.reaper.stop()
    await pipeline.registry.disconnect_all()
    await pipeline.store.close()
    logger.info("Veritas shutdown complete")


@asynccontextmanager
async def lifespan(settings: Optional[Settings] = None, **kwargs) -> AsyncIterator[Pipeline]:
    """Startup / shutdown hooks."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    pipeline = await create_pipeline(settings, **kwargs)
    try:
        yield pipeline
    finally:
        await shutdown_pipeline(pipeline)
