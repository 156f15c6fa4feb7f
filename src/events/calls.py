from __future__ import annotations

import logging
from typing import Any, Callable

from src import store
from src.events import ai_trigger, audit_log
from src.events.context import EventContext
from src.observability import incr_metric, log_event


def _guarded_write(
    write: Callable[[], dict[str, Any] | None],
    *,
    operation: str,
    call_id: str,
    ctx: EventContext | None,
    request_id: str | None,
) -> dict[str, Any] | None:
    try:
        return write()
    except Exception as exc:
        incr_metric("vapi.call.update_failed", operation=operation)
        log_event(
            "vapi_call_update_failed",
            level=logging.ERROR,
            request_id=request_id,
            operation=operation,
            call_id=call_id,
            exc=exc,
        )
        if ctx is not None:
            audit_log.record_error(ctx.event_id, exc, ctx.payload, request_id=request_id)
        return None


def apply_call_upsert(
    fields: dict[str, Any],
    *,
    operation: str,
    ctx: EventContext | None = None,
) -> dict[str, Any] | None:
    request_id = ctx.request_id if ctx else None
    return _guarded_write(
        lambda: store.upsert_call(fields),
        operation=operation,
        call_id=fields["vapi_call_id"],
        ctx=ctx,
        request_id=request_id,
    )


def apply_call_update(
    call_id: str,
    fields: dict[str, Any],
    *,
    operation: str,
    ctx: EventContext | None = None,
    request_id: str | None = None,
) -> dict[str, Any] | None:
    """Write only ``fields`` to the call; absent keys keep their stored values."""
    request_id = request_id or (ctx.request_id if ctx else None)
    row = _guarded_write(
        lambda: store.update_call(call_id, fields),
        operation=operation,
        call_id=call_id,
        ctx=ctx,
        request_id=request_id,
    )
    if row is None:
        log_event("vapi_call_update_unmatched", request_id=request_id, operation=operation, call_id=call_id)
    return row


def request_ai_processing(row: dict[str, Any] | None, *, call_id: str, request_id: str | None) -> None:
    if not row:
        log_event("vapi_ai_processing_skipped", request_id=request_id, call_id=call_id, reason="call_not_found")
        return
    ai_trigger.trigger_ai_processing(str(row.get("id") or call_id), request_id=request_id)


def save_transcript(
    call_id: str,
    transcript: str,
    *,
    ctx: EventContext | None = None,
    request_id: str | None = None,
) -> dict[str, Any] | None:
    request_id = request_id or (ctx.request_id if ctx else None)
    now = store.now_iso()
    row = apply_call_update(
        call_id,
        {"transcript": transcript, "transcript_received_at": now, "updated_at": now},
        operation="transcript",
        ctx=ctx,
        request_id=request_id,
    )
    log_event(
        "vapi_transcript_saved" if row else "vapi_transcript_not_saved",
        request_id=request_id,
        call_id=call_id,
        transcript_length=len(transcript),
    )
    request_ai_processing(row, call_id=call_id, request_id=request_id)
    return row
