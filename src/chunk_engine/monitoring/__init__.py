"""Monitoring and metrics instrumentation for the Chunk Engine.

Exports custom Prometheus metrics for operational monitoring and alerting.
"""

from chunk_engine.monitoring.metrics import (
    chunk_duration_seconds,
    chunks_total,
    items_total,
    recoveries_total,
    retry_attempts_total,
    rollbacks_total,
    start_metrics_server,
)

__all__ = [
    "chunks_total",
    "rollbacks_total",
    "chunk_duration_seconds",
    "items_total",
    "retry_attempts_total",
    "recoveries_total",
    "start_metrics_server",
]
