"""Structured event logs and process-local counters.

Every log line is one JSON object tagged with the service name, so webhook
acks, background processing and transcript backfills can be joined on
``request_id``. Counters live in this process only; ``GET
/api/vapi/webhook/status`` reports them as they stand, and they restart from
zero with the process.
"""
from __future__ import annotations

import json
import logging
import time
from collections import Counter
from datetime import date, datetime
from threading import Lock
from typing import Any


SERVICE_NAME = "call-webhook-engine"

logger = logging.getLogger("call_webhook_engine")

_metrics_lock = Lock()
_metrics_counter: Counter[str] = Counter()


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize(v) for v in value]
    return str(value)


def metric_key(name: str, **labels: Any) -> str:
    if not labels:
        return name
    ordered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}|{ordered}"


def incr_metric(name: str, value: int = 1, **labels: Any) -> None:
    key = metric_key(name, **{k: _normalize(v) for k, v in labels.items() if v is not None})
    with _metrics_lock:
        _metrics_counter[key] += value


def metrics_snapshot() -> dict[str, int]:
    with _metrics_lock:
        return dict(_metrics_counter)


def metric_total(name: str) -> int:
    """Sum a counter across all of its label combinations."""
    snapshot = metrics_snapshot()
    return sum(value for key, value in snapshot.items() if key == name or key.startswith(f"{name}|"))


def reset_metrics() -> None:
    with _metrics_lock:
        _metrics_counter.clear()


def log_event(
    event: str,
    *,
    level: int = logging.INFO,
    request_id: str | None = None,
    exc: BaseException | None = None,
    **fields: Any,
) -> None:
    """Emit ``event`` as one sorted JSON line.

    Passing ``exc`` records ``error`` and ``error_type`` from the exception;
    explicit ``error``/``error_type`` fields win over it.
    """
    payload: dict[str, Any] = {"event": event, "service": SERVICE_NAME}
    if request_id:
        payload["request_id"] = request_id
    if exc is not None:
        payload["error"] = str(exc)
        payload["error_type"] = type(exc).__name__
    for key, value in fields.items():
        payload[key] = _normalize(value)
    logger.log(level, json.dumps(payload, sort_keys=True))


def elapsed_ms(started: float) -> float:
    """Milliseconds since ``started``, a ``time.perf_counter()`` reading."""
    return round((time.perf_counter() - started) * 1000, 2)
