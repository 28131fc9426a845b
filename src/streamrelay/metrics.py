"""Prometheus metrics definitions for streamrelay.

All custom metrics use the ``streamrelay_`` prefix. HTTP-level metrics
(request count, duration, sizes) come from
``prometheus-fastapi-instrumentator`` and are not duplicated here.

Counters reset to zero on restart.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Upload outcome counter  (labels: outcome = completed | failed)
# ---------------------------------------------------------------------------
uploads_total: Counter | None = None

# ---------------------------------------------------------------------------
# Part counters  (labels: status = ok | error)
# ---------------------------------------------------------------------------
parts_total: Counter | None = None
parts_in_flight: Gauge | None = None

# ---------------------------------------------------------------------------
# Byte counters
# ---------------------------------------------------------------------------
bytes_relayed_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Called once when metrics are enabled. When metrics are disabled the
    module-level references stay ``None`` and callers skip recording.
    """
    global _initialized
    global uploads_total, parts_total, parts_in_flight, bytes_relayed_total

    if _initialized:
        return

    uploads_total = Counter(
        "streamrelay_uploads_total",
        "Total streamed uploads by outcome",
        ["outcome"],
    )

    parts_total = Counter(
        "streamrelay_parts_total",
        "Total part uploads by status",
        ["status"],
    )

    parts_in_flight = Gauge(
        "streamrelay_parts_in_flight",
        "Part uploads currently in progress",
    )

    bytes_relayed_total = Counter(
        "streamrelay_bytes_relayed_total",
        "Total bytes acknowledged by the storage backend",
    )

    _initialized = True
