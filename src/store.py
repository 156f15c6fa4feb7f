from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from src.db import supabase


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _quote_filter_value(value: str) -> str:
    """Quote a value for a PostgREST logic filter so `,` `.` `(` `)` stay literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (TypeError, ValueError):
        return False
    return True


def _call_match_filter(call_id: str) -> str:
    """Match a call by provider id, or by internal id when ``call_id`` can be one.

    ``calls.id`` is a uuid column, so a non-uuid value must never reach it or
    Postgres rejects the whole filter.
    """
    clauses = [f"vapi_call_id.eq.{_quote_filter_value(call_id)}"]
    if _is_uuid(call_id):
        clauses.append(f"id.eq.{call_id}")
    return ",".join(clauses)


def get_organization_row(organization_id: str) -> dict[str, Any] | None:
    result = (
        supabase.table("organizations")
        .select("id, vapi_public_key, vapi_api_key, vapi_private_key, vapi_webhook_url, settings, vapi_settings")
        .eq("id", organization_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def find_call(call_id: str) -> dict[str, Any] | None:
    result = (
        supabase.table("calls")
        .select("*")
        .or_(_call_match_filter(call_id))
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def find_call_organization_id(vapi_call_id: str) -> str | None:
    result = (
        supabase.table("calls")
        .select("organization_id")
        .eq("vapi_call_id", vapi_call_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0].get("organization_id")


def find_phone_number_organization_id(phone_number: str) -> str | None:
    result = (
        supabase.table("phone_numbers")
        .select("organization_id")
        .eq("phone_number", phone_number)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0].get("organization_id")


def upsert_call(fields: dict[str, Any]) -> dict[str, Any] | None:
    """Insert or update a call keyed by ``vapi_call_id``; only the given columns are written."""
    result = supabase.table("calls").upsert(fields, on_conflict="vapi_call_id").execute()
    return result.data[0] if result.data else None


def update_call(call_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    """Partially update the call matching ``call_id`` as either provider id or internal id."""
    result = supabase.table("calls").update(fields).or_(_call_match_filter(call_id)).execute()
    return result.data[0] if result.data else None


def insert_webhook_log(entry: dict[str, Any]) -> None:
    supabase.table("webhook_logs").insert(entry).execute()


def recent_webhook_logs(limit: int, webhook_type: str = "vapi") -> list[dict[str, Any]]:
    result = (
        supabase.table("webhook_logs")
        .select("event_id, event_type, created_at, response_status")
        .eq("webhook_type", webhook_type)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return result.data or []


def insert_ai_processing_job(job: dict[str, Any]) -> dict[str, Any] | None:
    result = supabase.table("ai_processing_queue").insert(job).execute()
    return result.data[0] if result.data else None
