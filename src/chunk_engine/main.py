"""
Process-level entry points for embedding the Chunk Engine.

Call ``bootstrap`` once at startup (logging, metrics endpoint) and
``shutdown`` before exit. Job wiring belongs to the embedding application:

    bootstrap()
    report = create_orchestrator(reader, writer, boundary, processor=handle).run()
    shutdown()
"""

from typing import Any

import structlog

from chunk_engine.chunk.interfaces import ItemReader, ItemWriter
from chunk_engine.chunk.orchestrator import ChunkOrchestrator
from chunk_engine.config import Settings, settings
from chunk_engine.logging_config import configure_logging
from chunk_engine.monitoring.metrics import start_metrics_server
from chunk_engine.persistence.redis_client import RedisClient
from chunk_engine.transaction.boundary import TransactionBoundary

logger = structlog.get_logger(__name__)


def bootstrap(app_settings: Settings | None = None) -> None:
    """Configure logging and start the metrics endpoint."""
    app_settings = app_settings or settings
    configure_logging(app_settings.LOG_LEVEL, app_settings.ENVIRONMENT)
    metrics_started = start_metrics_server(app_settings)
    logger.info(
        "Chunk engine startup",
        version=app_settings.APP_VERSION,
        environment=app_settings.ENVIRONMENT,
        retry_mode=app_settings.RETRY_MODE,
        retry_context_backend=app_settings.RETRY_CONTEXT_BACKEND,
        metrics_port=app_settings.METRICS_PORT if metrics_started else None,
    )


def create_orchestrator(
    reader: ItemReader,
    writer: ItemWriter,
    boundary: TransactionBoundary,
    app_settings: Settings | None = None,
    **overrides: Any,
) -> ChunkOrchestrator:
    """Build a ChunkOrchestrator from the global (or given) settings."""
    return ChunkOrchestrator.from_settings(app_settings or settings, reader, writer, boundary, **overrides)


def shutdown() -> None:
    """Release shared resources."""
    RedisClient.close_pool()
    logger.info("Chunk engine shutdown")
