"""
Unit tests for process entry points, logging and metrics bootstrap.
"""

import logging
from unittest.mock import MagicMock, patch

from chunk_engine.chunk.memory import ListItemWriter, QueueItemReader
from chunk_engine.chunk.orchestrator import ChunkOrchestrator
from chunk_engine.logging_config import add_app_context, configure_logging
from chunk_engine.main import bootstrap, create_orchestrator, shutdown
from chunk_engine.monitoring.metrics import start_metrics_server
from chunk_engine.persistence.redis_client import RedisClient


def test_add_app_context():
    """Test the app-context processor."""
    event = add_app_context(None, "info", {"event": "hello"})
    assert event["app"] == "chunk-engine"


def test_configure_logging_sets_level():
    """Test that the root logger gets one handler at the configured level."""
    configure_logging("WARNING", "production")

    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1

    configure_logging("DEBUG", "development")
    assert logging.getLogger().level == logging.DEBUG


def test_metrics_server_disabled(test_settings):
    """Test that no server starts when PROMETHEUS_ENABLED is false."""
    with patch("chunk_engine.monitoring.metrics.start_http_server") as mock_start:
        assert start_metrics_server(test_settings) is False
        mock_start.assert_not_called()


def test_metrics_server_enabled(test_settings):
    test_settings.PROMETHEUS_ENABLED = True
    test_settings.METRICS_PORT = 9999

    with patch("chunk_engine.monitoring.metrics.start_http_server") as mock_start:
        assert start_metrics_server(test_settings) is True
        mock_start.assert_called_once_with(9999)


def test_bootstrap_configures_logging_and_metrics(test_settings):
    with patch("chunk_engine.main.configure_logging") as mock_logging, \
            patch("chunk_engine.main.start_metrics_server", return_value=False) as mock_metrics:
        bootstrap(test_settings)

    mock_logging.assert_called_once_with("DEBUG", "development")
    mock_metrics.assert_called_once_with(test_settings)


def test_create_orchestrator_uses_settings(test_settings, boundary):
    orchestrator = create_orchestrator(
        QueueItemReader([1], boundary),
        ListItemWriter(boundary),
        boundary,
        app_settings=test_settings,
    )

    assert isinstance(orchestrator, ChunkOrchestrator)
    assert orchestrator.chunk_size == test_settings.CHUNK_SIZE


def test_shutdown_closes_redis_pool():
    pool = MagicMock()
    RedisClient._pool = pool

    shutdown()

    pool.disconnect.assert_called_once()
    assert RedisClient._pool is None
