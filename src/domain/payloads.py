from __future__ import annotations

import json
from datetime import datetime
from typing import Any


def parse_webhook_body(body: Any) -> dict[str, Any]:
    """Decode a webhook body that may be bytes, a JSON object, or a JSON-encoded string of one."""
    value = body
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    # Some senders double-encode the object as a JSON string.
    for _ in range(2):
        if isinstance(value, str):
            value = json.loads(value)
    if not isinstance(value, dict):
        raise ValueError("webhook payload must be a JSON object")
    return value


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_event_type(payload: dict[str, Any]) -> str:
    return str(payload.get("type") or "unknown")


def extract_call(payload: dict[str, Any]) -> dict[str, Any]:
    return as_dict(payload.get("call"))


def extract_call_id(payload: dict[str, Any]) -> str | None:
    call_id = extract_call(payload).get("id")
    return str(call_id) if call_id else None


def extract_any_call_id(payload: dict[str, Any]) -> str | None:
    call_id = extract_call_id(payload) or payload.get("callId")
    return str(call_id) if call_id else None


def extract_phone_number(call: dict[str, Any]) -> str | None:
    phone = call.get("phoneNumber")
    if isinstance(phone, dict):
        phone = phone.get("number")
    if not phone:
        phone = as_dict(call.get("customer")).get("number")
    return str(phone) if phone else None


def extract_customer_number(call: dict[str, Any]) -> str | None:
    number = as_dict(call.get("customer")).get("number") or call.get("phoneNumber")
    return number if isinstance(number, str) and number else None


def extract_transcript_text(payload: dict[str, Any]) -> str | None:
    for candidate in (
        payload.get("transcript"),
        as_dict(payload.get("message")).get("transcript"),
        extract_call(payload).get("transcript"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return None


def extract_recording_url(payload: dict[str, Any]) -> str | None:
    call = extract_call(payload)
    for candidate in (
        payload.get("recordingUrl"),
        call.get("recordingUrl"),
        as_dict(call.get("recording")).get("url"),
    ):
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def compute_event_id(payload: dict[str, Any], received_at: datetime) -> tuple[str, bool]:
    """Return the event id and whether it had to be synthesized.

    A synthesized id is ``type-callId-receiptMillis``. It is a heuristic, not an
    idempotency key: redeliveries arrive with a new receipt time and are not caught.
    """
    explicit = payload.get("id") or payload.get("eventId")
    if explicit:
        return str(explicit), False
    millis = int(received_at.timestamp() * 1000)
    return f"{extract_event_type(payload)}-{extract_call_id(payload)}-{millis}", True
