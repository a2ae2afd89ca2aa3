r"""merchcore\engine\core\observability.py"""

from __future__ import annotations

import json
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

LOGGER = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()

_OPERATION_COUNTER = Counter(
    "engine_operations_total",
    "Total engine operations",
    ["operation", "status"],
    registry=_REGISTRY,
)
_LATENCY_HISTOGRAM = Histogram(
    "engine_operation_latency_seconds",
    "Engine operation latency",
    ["operation"],
    registry=_REGISTRY,
)


@contextmanager
def observe_operation(operation: str, **context: Any) -> Iterator[dict[str, Any]]:
    """Time an engine operation, count its outcome and emit a JSON log line.

    The yielded dictionary is merged into the log payload, so callers can add
    facts they only learn while the operation runs (e.g. ``mape``).
    """

    start_perf = time.perf_counter()
    start_wall = time.time()
    extra: dict[str, Any] = {}
    status = "ok"
    try:
        yield extra
    except Exception:
        status = "error"
        raise
    finally:
        latency = time.perf_counter() - start_perf
        _OPERATION_COUNTER.labels(operation, status).inc()
        _LATENCY_HISTOGRAM.labels(operation).observe(latency)

        log_payload = {
            "timestamp": datetime.fromtimestamp(start_wall, tz=timezone.utc).isoformat(),
            "operation": operation,
            "status": status,
            "latency_ms": int(latency * 1000),
            "run_id": str(uuid.uuid4()),
            **context,
            **extra,
        }
        LOGGER.info(json.dumps(log_payload, default=str))


def sample_value(name: str, labels: dict[str, str]) -> float:
    """Return the current value of a metric sample, ``0.0`` when unseen."""

    value = _REGISTRY.get_sample_value(name, labels)
    return float(value) if value is not None else 0.0


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus text exposition and its content type."""

    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST
