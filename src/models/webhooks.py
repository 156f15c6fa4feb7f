from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class WebhookAckResponse(BaseModel):
    received: bool = True


class WebhookLogListItem(BaseModel):
    event_id: str | None = None
    event_type: str | None = None
    created_at: datetime | None = None
    response_status: int | None = None


class VapiWebhookConfiguration(BaseModel):
    environment: str
    signature_verification: Literal["enforced", "permissive"]
    signature_header: str
    requires_raw_body: bool
    dedupe_backend: str
    dedupe_ttl_seconds: int
    transcript_backfill_initial_delay_seconds: float
    transcript_backfill_max_attempts: int


class VapiWebhookStatusResponse(BaseModel):
    status: Literal["active"] = "active"
    timestamp: datetime
    processed_events: int | None = None
    pending_transcript_backfills: int = 0
    recent_webhooks: list[WebhookLogListItem] = Field(default_factory=list)
    supported_event_types: list[str] = Field(default_factory=list)
    configuration: VapiWebhookConfiguration
    metrics: dict[str, int] = Field(default_factory=dict)
