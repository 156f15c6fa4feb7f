from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from src import store
from src.config import settings
from src.observability import incr_metric, log_event


_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ai-trigger")


def calculate_priority(call: dict[str, Any]) -> int:
    priority = 5
    duration = call.get("duration") or 0
    if duration > 300:
        priority += 2
    elif duration > 180:
        priority += 1
    if call.get("status") == "completed":
        priority += 1
    outcome = str(call.get("outcome") or "").lower()
    if "interested" in outcome:
        priority += 2
    if "appointment" in outcome:
        priority += 3
    return min(priority, 10)


def enqueue_call_for_ai_processing(call_id: str, *, request_id: str | None = None) -> dict[str, Any] | None:
    call = store.find_call(call_id)
    if not call:
        log_event("vapi_ai_processing_call_missing", level=logging.WARNING, request_id=request_id, call_id=call_id)
        return None
    if call.get("ai_processed_at"):
        log_event("vapi_ai_processing_already_done", request_id=request_id, call_id=call_id)
        return None

    priority = calculate_priority(call)
    try:
        job = store.insert_ai_processing_job(
            {
                "call_id": call["id"],
                "organization_id": call.get("organization_id"),
                "priority": priority,
                "status": "pending",
                "created_at": store.now_iso(),
            }
        )
    except Exception as exc:
        if "duplicate" in str(exc).lower() or "unique" in str(exc).lower():
            incr_metric("vapi.ai_processing.already_queued")
            log_event("vapi_ai_processing_already_queued", request_id=request_id, call_id=call["id"])
            return None
        raise

    incr_metric("vapi.ai_processing.queued")
    log_event(
        "vapi_ai_processing_queued",
        request_id=request_id,
        call_id=call["id"],
        priority=priority,
        high_priority=priority >= settings.ai_processing_priority_threshold,
    )
    return job


def _log_failure(future: Future, *, call_id: str, request_id: str | None) -> None:
    exc = future.exception()
    if exc is None:
        return
    incr_metric("vapi.ai_processing.failed")
    log_event(
        "vapi_ai_processing_failed",
        level=logging.ERROR,
        request_id=request_id,
        call_id=call_id,
        exc=exc,
    )


def trigger_ai_processing(call_id: str, *, request_id: str | None = None) -> None:
    """Hand a call to AI post-processing without waiting on the outcome."""
    try:
        future = _executor.submit(enqueue_call_for_ai_processing, call_id, request_id=request_id)
    except Exception as exc:
        incr_metric("vapi.ai_processing.failed")
        log_event(
            "vapi_ai_processing_trigger_failed",
            level=logging.ERROR,
            request_id=request_id,
            call_id=call_id,
            exc=exc,
        )
        return
    future.add_done_callback(lambda done: _log_failure(done, call_id=call_id, request_id=request_id))
