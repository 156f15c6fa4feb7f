from __future__ import annotations

import logging
import time
from typing import Literal

from src.domain.dedupe import EventDeduplicator, get_event_deduplicator
from src.events import audit_log
from src.events.context import EventContext
from src.events.handlers import route_event
from src.observability import elapsed_ms, incr_metric, log_event


ProcessingResult = Literal["duplicate", "processed", "failed"]


def process_webhook_event(
    ctx: EventContext,
    deduplicator: EventDeduplicator | None = None,
) -> ProcessingResult:
    """Run an acknowledged event through dedupe, archival and routing.

    This runs after the HTTP response has been sent, so nothing may escape it.
    """
    dedupe = deduplicator or get_event_deduplicator()
    if ctx.event_id_synthesized:
        incr_metric("vapi.webhook.event_id_synthesized")
        log_event(
            "vapi_webhook_event_id_synthesized",
            level=logging.WARNING,
            request_id=ctx.request_id,
            event_id=ctx.event_id,
            event_type=ctx.event_type,
        )

    try:
        already_processed = dedupe.check_and_mark(ctx.event_id)
    except Exception as exc:
        already_processed = False
        log_event(
            "vapi_webhook_dedupe_unavailable",
            level=logging.WARNING,
            request_id=ctx.request_id,
            event_id=ctx.event_id,
            backend=getattr(dedupe, "backend", None),
            exc=exc,
        )
    if already_processed:
        incr_metric("vapi.webhook.duplicate")
        log_event(
            "vapi_webhook_duplicate_ignored",
            request_id=ctx.request_id,
            event_id=ctx.event_id,
            event_type=ctx.event_type,
        )
        return "duplicate"

    started = time.perf_counter()
    audit_log.record_received(ctx.event_id, ctx.payload, request_id=ctx.request_id)

    try:
        normalized = route_event(ctx)
    except Exception as exc:
        incr_metric("vapi.webhook.processing_failed")
        log_event(
            "vapi_webhook_processing_failed",
            level=logging.ERROR,
            request_id=ctx.request_id,
            event_id=ctx.event_id,
            event_type=ctx.event_type,
            exc=exc,
            elapsed_ms=elapsed_ms(started),
        )
        audit_log.record_error(ctx.event_id, exc, ctx.payload, request_id=ctx.request_id)
        return "failed"

    log_event(
        "vapi_webhook_processed",
        request_id=ctx.request_id,
        event_id=ctx.event_id,
        event_type=ctx.event_type,
        normalized_event_type=normalized,
        organization_id=ctx.organization_id,
        elapsed_ms=elapsed_ms(started),
    )
    return "processed"
