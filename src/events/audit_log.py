from __future__ import annotations

import logging
from typing import Any

from src import store
from src.domain.payloads import extract_any_call_id, extract_event_type
from src.observability import incr_metric, log_event


def _write(kind: str, entry: dict[str, Any], *, request_id: str | None) -> bool:
    try:
        store.insert_webhook_log(entry)
    except Exception as exc:
        incr_metric("vapi.audit_log.write_failed", kind=kind)
        log_event(
            "vapi_audit_log_write_failed",
            level=logging.WARNING,
            request_id=request_id,
            kind=kind,
            event_id=entry.get("event_id"),
            exc=exc,
        )
        return False
    return True


def record_received(event_id: str, payload: dict[str, Any], *, request_id: str | None = None) -> bool:
    """Archive an accepted payload. Best effort: failures are logged, never raised."""
    return _write(
        "received",
        {
            "webhook_type": "vapi",
            "event_id": event_id,
            "event_type": extract_event_type(payload),
            "call_id": extract_any_call_id(payload),
            "request_body": payload,
            "created_at": store.now_iso(),
        },
        request_id=request_id,
    )


def record_error(
    event_id: str,
    error: BaseException,
    payload: dict[str, Any],
    *,
    request_id: str | None = None,
) -> bool:
    """Archive a processing failure next to the payload that caused it. Best effort."""
    return _write(
        "error",
        {
            "webhook_type": "vapi-error",
            "event_id": event_id,
            "event_type": extract_event_type(payload),
            "call_id": extract_any_call_id(payload),
            "request_body": payload,
            "response_body": {"error": str(error), "error_type": type(error).__name__},
            "response_status": 500,
            "created_at": store.now_iso(),
        },
        request_id=request_id,
    )
