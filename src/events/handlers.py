from __future__ import annotations

from typing import Any, Callable

from src import store
from src.domain.normalization import NormalizedEventType, normalize_event_type
from src.domain.payloads import (
    as_dict,
    extract_any_call_id,
    extract_call,
    extract_call_id,
    extract_customer_number,
    extract_phone_number,
    extract_recording_url,
    extract_transcript_text,
)
from src.events.backfill import get_backfill_scheduler
from src.events.calls import apply_call_update, apply_call_upsert, request_ai_processing, save_transcript
from src.events.context import EventContext
from src.observability import incr_metric, log_event


def _skip(ctx: EventContext, reason: str) -> None:
    log_event(
        "vapi_event_skipped",
        request_id=ctx.request_id,
        event_id=ctx.event_id,
        event_type=ctx.event_type,
        reason=reason,
    )


def _set_if_present(fields: dict[str, Any], column: str, value: Any) -> None:
    if value is not None and value != "":
        fields[column] = value


def handle_call_started(ctx: EventContext) -> None:
    call = extract_call(ctx.payload)
    call_id = extract_call_id(ctx.payload)
    if not call_id:
        _skip(ctx, "missing_call_id")
        return

    now = store.now_iso()
    fields: dict[str, Any] = {
        "vapi_call_id": call_id,
        "status": "in-progress",
        "started_at": call.get("startedAt") or now,
        "updated_at": now,
    }
    _set_if_present(fields, "phone_number", extract_phone_number(call))
    _set_if_present(fields, "customer_phone", extract_customer_number(call))
    _set_if_present(fields, "assistant_id", call.get("assistantId"))
    _set_if_present(fields, "organization_id", ctx.organization_id)
    metadata = as_dict(call.get("metadata"))
    _set_if_present(fields, "campaign_id", metadata.get("campaignId"))
    _set_if_present(fields, "lead_id", metadata.get("leadId"))

    apply_call_upsert(fields, operation="call-started", ctx=ctx)


def handle_call_ended(ctx: EventContext) -> None:
    call = extract_call(ctx.payload)
    call_id = extract_call_id(ctx.payload)
    if not call_id:
        _skip(ctx, "missing_call_id")
        return

    now = store.now_iso()
    fields: dict[str, Any] = {
        "status": "completed",
        "ended_at": call.get("endedAt") or now,
        "updated_at": now,
        "vapi_webhook_received_at": ctx.received_at.isoformat(),
        "raw_webhook_data": call,
    }
    _set_if_present(fields, "end_reason", call.get("endedReason") or call.get("endReason"))
    _set_if_present(fields, "duration", call.get("duration"))
    _set_if_present(fields, "cost", call.get("cost"))
    _set_if_present(fields, "summary", call.get("summary"))
    _set_if_present(fields, "recording_url", extract_recording_url(ctx.payload))
    analysis = as_dict(call.get("analysis"))
    _set_if_present(fields, "sentiment", analysis.get("sentiment"))
    _set_if_present(fields, "key_points", analysis.get("keyPoints"))

    transcript = call.get("transcript") or ctx.payload.get("transcript")
    if not isinstance(transcript, str) or not transcript.strip():
        transcript = None
    if transcript:
        fields["transcript"] = transcript

    row = apply_call_update(call_id, fields, operation="call-ended", ctx=ctx)
    log_event(
        "vapi_call_ended",
        request_id=ctx.request_id,
        call_id=call_id,
        organization_id=ctx.organization_id,
        has_transcript=bool(transcript),
        duration=call.get("duration"),
        cost=call.get("cost"),
    )
    if transcript:
        request_ai_processing(row, call_id=call_id, request_id=ctx.request_id)
        return
    get_backfill_scheduler().schedule_initial(call_id, ctx.organization_id, request_id=ctx.request_id)


def handle_transcript(ctx: EventContext) -> None:
    transcript = extract_transcript_text(ctx.payload)
    call_id = extract_any_call_id(ctx.payload)
    if not transcript or not call_id:
        _skip(ctx, "missing_transcript_or_call_id")
        return
    save_transcript(call_id, transcript, ctx=ctx)


def handle_analysis_complete(ctx: EventContext) -> None:
    analysis = ctx.payload.get("analysis")
    call_id = extract_call_id(ctx.payload)
    if not isinstance(analysis, dict) or not analysis or not call_id:
        _skip(ctx, "missing_analysis_or_call_id")
        return

    fields: dict[str, Any] = {"analysis_data": analysis, "updated_at": store.now_iso()}
    _set_if_present(fields, "sentiment", analysis.get("sentiment"))
    _set_if_present(fields, "key_points", analysis.get("keyPoints"))
    _set_if_present(fields, "outcome", analysis.get("outcome"))
    _set_if_present(fields, "call_quality_score", analysis.get("qualityScore"))
    apply_call_update(call_id, fields, operation="analysis-complete", ctx=ctx)


def handle_speech_update(ctx: EventContext) -> None:
    partial = as_dict(ctx.payload.get("message")).get("transcript")
    call_id = extract_call_id(ctx.payload)
    if not isinstance(partial, str) or not partial or not call_id:
        _skip(ctx, "missing_partial_transcript_or_call_id")
        return
    apply_call_update(
        call_id,
        {"partial_transcript": partial, "updated_at": store.now_iso()},
        operation="speech-update",
        ctx=ctx,
    )


def handle_recording_ready(ctx: EventContext) -> None:
    recording_url = extract_recording_url(ctx.payload)
    call_id = extract_call_id(ctx.payload)
    if not recording_url or not call_id:
        _skip(ctx, "missing_recording_url_or_call_id")
        return
    apply_call_update(
        call_id,
        {"recording_url": recording_url, "updated_at": store.now_iso()},
        operation="recording-ready",
        ctx=ctx,
    )


EVENT_HANDLERS: dict[NormalizedEventType, Callable[[EventContext], None]] = {
    "call-started": handle_call_started,
    "call-ended": handle_call_ended,
    "transcript": handle_transcript,
    "analysis-complete": handle_analysis_complete,
    "speech-update": handle_speech_update,
    "recording-ready": handle_recording_ready,
}


def route_event(ctx: EventContext) -> NormalizedEventType:
    normalized = normalize_event_type(ctx.event_type)
    handler = EVENT_HANDLERS.get(normalized)
    if handler is None:
        incr_metric("vapi.webhook.unhandled")
        log_event(
            "vapi_event_unhandled",
            request_id=ctx.request_id,
            event_id=ctx.event_id,
            event_type=ctx.event_type,
        )
        return normalized
    incr_metric("vapi.webhook.routed", event_type=normalized)
    handler(ctx)
    return normalized
