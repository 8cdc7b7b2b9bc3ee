"""Custom Prometheus metrics for the Chunk Engine.

Exposed through prometheus_client's default registry; call
``start_metrics_server`` to serve them. Alert rules should be configured for:
- rollbacks_total (rising rollback rate means chunks keep failing)
- recoveries_total (every recovery is a skipped item needing audit)
- retry_attempts_total (high failure rate indicates unstable collaborators)
"""

from prometheus_client import Counter, Histogram, start_http_server

from chunk_engine.config import Settings

# === Chunk Metrics ===

chunks_total = Counter(
    "chunk_engine_chunks_total",
    "Total chunk transactions by outcome",
    ["outcome"],
)
"""
Chunk transactions counter.

Labels:
- outcome: committed, rolled_back
"""

rollbacks_total = Counter(
    "chunk_engine_rollbacks_total",
    "Total chunk rollbacks by error type",
    ["reason"],
)
"""
Chunk rollbacks counter.

Labels:
- reason: class name of the error that rolled the chunk back

Alert thresholds:
- WARN: rollbacks > 10% of chunks
"""

chunk_duration_seconds = Histogram(
    "chunk_engine_chunk_duration_seconds",
    "Wall time of one chunk transaction",
    ["outcome"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0],
)

# === Item Metrics ===

items_total = Counter(
    "chunk_engine_items_total",
    "Total items by result",
    ["result"],
)
"""
Items counter (counted on commit).

Labels:
- result: written, filtered, skipped
"""

# === Retry Metrics ===

retry_attempts_total = Counter(
    "chunk_engine_retry_attempts_total",
    "Total retry executions by mode and outcome",
    ["mode", "success"],
)
"""
Retry attempts counter.

Labels:
- mode: stateless, stateful
- success: true (attempt succeeded), false (attempt failed)
"""

recoveries_total = Counter(
    "chunk_engine_recoveries_total",
    "Total items recovered (skipped) after exhausting retries",
    ["reason"],
)
"""
Recoveries counter.

Labels:
- reason: class name of the final error

Alert thresholds:
- WARN: any recovery (skipped items require audit)
"""


def start_metrics_server(settings: Settings) -> bool:
    """
    Serve /metrics when PROMETHEUS_ENABLED.

    Returns:
        True if the server was started
    """
    if not settings.PROMETHEUS_ENABLED:
        return False
    start_http_server(settings.METRICS_PORT)
    return True
