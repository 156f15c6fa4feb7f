from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from src import store
from src.config import settings
from src.domain.credentials import resolve_vapi_credentials
from src.domain.dedupe import get_event_deduplicator
from src.domain.normalization import SUPPORTED_EVENT_TYPES
from src.domain.payloads import (
    compute_event_id,
    extract_call,
    extract_call_id,
    extract_event_type,
    extract_phone_number,
    parse_webhook_body,
)
from src.domain.signatures import verify_vapi_signature
from src.events.backfill import get_backfill_scheduler
from src.events.context import EventContext
from src.events.pipeline import process_webhook_event
from src.models.webhooks import (
    VapiWebhookConfiguration,
    VapiWebhookStatusResponse,
    WebhookAckResponse,
    WebhookLogListItem,
)
from src.observability import elapsed_ms, incr_metric, log_event, metrics_snapshot


router = APIRouter(prefix="/api/vapi", tags=["vapi-webhooks"])


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _rejection(*, status_code: int, error_type: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"type": error_type, "provider": "vapi", "message": message},
    )


def _reject(reason: str, *, request_id: str | None, event_type: str, call_id: str | None) -> HTTPException:
    incr_metric("vapi.webhook.rejected", reason=reason)
    log_event(
        "vapi_webhook_rejected",
        level=logging.WARNING,
        request_id=request_id,
        reason=reason,
        event_type=event_type,
        call_id=call_id,
    )
    # The reason stays in the logs; callers only learn that verification failed.
    return _rejection(
        status_code=status.HTTP_401_UNAUTHORIZED,
        error_type="webhook_signature_invalid",
        message="Webhook signature verification failed",
    )


def _resolve_organization_id(payload: dict[str, Any], *, request_id: str | None) -> str | None:
    call = extract_call(payload)
    explicit = call.get("organizationId")
    if explicit:
        return str(explicit)
    try:
        call_id = extract_call_id(payload)
        if call_id:
            organization_id = store.find_call_organization_id(call_id)
            if organization_id:
                return str(organization_id)
        phone_number = extract_phone_number(call) or extract_phone_number(payload)
        if phone_number:
            organization_id = store.find_phone_number_organization_id(phone_number)
            if organization_id:
                return str(organization_id)
    except Exception as exc:
        log_event(
            "vapi_webhook_tenant_lookup_failed",
            level=logging.WARNING,
            request_id=request_id,
            exc=exc,
        )
        return None
    return None


def _verify_or_raise(
    *,
    raw_body: bytes,
    signature: str | None,
    organization_id: str | None,
    request_id: str | None,
    event_type: str,
    call_id: str | None,
) -> bool:
    """Return True when the signature was checked, False when the development escape hatch let it through."""
    unverifiable_reason: str | None = None
    if not signature:
        unverifiable_reason = "missing_signature"
    elif not organization_id:
        unverifiable_reason = "tenant_unresolved"
    else:
        credentials = resolve_vapi_credentials(organization_id)
        if credentials is None:
            unverifiable_reason = "not_configured"
        elif not verify_vapi_signature(raw_body, signature, credentials.public_key):
            raise _reject("invalid_signature", request_id=request_id, event_type=event_type, call_id=call_id)

    if unverifiable_reason is None:
        return True
    if not settings.unsigned_webhooks_allowed:
        raise _reject(unverifiable_reason, request_id=request_id, event_type=event_type, call_id=call_id)
    incr_metric("vapi.webhook.unverified_allowed", reason=unverifiable_reason)
    log_event(
        "vapi_webhook_unverified_allowed",
        level=logging.WARNING,
        request_id=request_id,
        reason=unverifiable_reason,
        environment=settings.environment,
        event_type=event_type,
        call_id=call_id,
    )
    return False


@router.post("/webhook", response_model=WebhookAckResponse)
async def ingest_vapi_webhook(request: Request, background_tasks: BackgroundTasks):
    req_id = _request_id(request)
    started = time.perf_counter()
    received_at = datetime.now(timezone.utc)
    raw_body = await request.body()
    incr_metric("vapi.webhook.received")

    if not raw_body:
        if not settings.unsigned_webhooks_allowed:
            incr_metric("vapi.webhook.rejected", reason="raw_body_missing")
            log_event("vapi_webhook_rejected", level=logging.WARNING, request_id=req_id, reason="raw_body_missing")
            raise _rejection(
                status_code=status.HTTP_400_BAD_REQUEST,
                error_type="webhook_raw_body_required",
                message="Raw body required for signature verification",
            )
        log_event("vapi_webhook_raw_body_missing", level=logging.WARNING, request_id=req_id)
        payload: dict[str, Any] = {}
    else:
        try:
            payload = parse_webhook_body(raw_body)
        except ValueError as exc:
            incr_metric("vapi.webhook.rejected", reason="invalid_payload")
            log_event(
                "vapi_webhook_payload_invalid",
                level=logging.ERROR,
                request_id=req_id,
                exc=exc,
            )
            raise _rejection(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                error_type="webhook_payload_invalid",
                message="Webhook payload could not be parsed",
            ) from exc

    event_type = extract_event_type(payload)
    call_id = extract_call_id(payload)
    organization_id = _resolve_organization_id(payload, request_id=req_id)
    signature_verified = _verify_or_raise(
        raw_body=raw_body,
        signature=request.headers.get(settings.vapi_signature_header),
        organization_id=organization_id,
        request_id=req_id,
        event_type=event_type,
        call_id=call_id,
    )

    event_id, synthesized = compute_event_id(payload, received_at)
    ctx = EventContext(
        event_id=event_id,
        event_type=event_type,
        payload=payload,
        received_at=received_at,
        organization_id=organization_id,
        request_id=req_id,
        event_id_synthesized=synthesized,
    )
    # Runs only after the response below has been sent.
    background_tasks.add_task(process_webhook_event, ctx)

    incr_metric("vapi.webhook.acknowledged")
    log_event(
        "vapi_webhook_acknowledged",
        request_id=req_id,
        event_id=event_id,
        event_type=event_type,
        call_id=call_id,
        organization_id=organization_id,
        signature_verified=signature_verified,
        elapsed_ms=elapsed_ms(started),
    )
    return WebhookAckResponse(received=True)


@router.get("/webhook/status", response_model=VapiWebhookStatusResponse)
async def get_vapi_webhook_status(request: Request):
    req_id = _request_id(request)
    try:
        recent_rows = store.recent_webhook_logs(settings.webhook_status_recent_limit)
    except Exception as exc:
        log_event("vapi_webhook_status_logs_unavailable", level=logging.WARNING, request_id=req_id, exc=exc)
        recent_rows = []

    deduplicator = get_event_deduplicator()
    scheduler = get_backfill_scheduler()
    return VapiWebhookStatusResponse(
        timestamp=datetime.now(timezone.utc),
        processed_events=deduplicator.size(),
        pending_transcript_backfills=len(scheduler.pending()),
        recent_webhooks=[WebhookLogListItem(**row) for row in recent_rows],
        supported_event_types=list(SUPPORTED_EVENT_TYPES),
        configuration=VapiWebhookConfiguration(
            environment=settings.environment,
            signature_verification="permissive" if settings.unsigned_webhooks_allowed else "enforced",
            signature_header=settings.vapi_signature_header,
            requires_raw_body=not settings.unsigned_webhooks_allowed,
            dedupe_backend=deduplicator.backend,
            dedupe_ttl_seconds=settings.webhook_dedupe_ttl_seconds,
            transcript_backfill_initial_delay_seconds=scheduler.initial_delay_seconds,
            transcript_backfill_max_attempts=scheduler.max_attempts,
        ),
        metrics=metrics_snapshot(),
    )
