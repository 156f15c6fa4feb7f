from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, fields, replace
from threading import Lock
from typing import Any, Callable

from src import store
from src.config import settings
from src.observability import log_event


@dataclass(frozen=True)
class VapiCredentials:
    """Calling-provider credentials for one organization.

    ``private_key`` is the server API key, ``public_key`` verifies webhook signatures.
    """
    public_key: str | None
    private_key: str
    webhook_url: str | None = None


@dataclass(frozen=True)
class CredentialFields:
    public_key: str | None = None
    private_key: str | None = None
    webhook_url: str | None = None

    def merged_under(self, higher: "CredentialFields") -> "CredentialFields":
        """Fill fields ``higher`` left empty from this lower-precedence source."""
        updates = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if not getattr(higher, f.name) and getattr(self, f.name)
        }
        return replace(higher, **updates)


class CredentialsDisabled(Exception):
    """The legacy settings blob switched the integration off."""


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def from_dedicated_columns(row: dict[str, Any]) -> CredentialFields | None:
    found = CredentialFields(
        public_key=_text(row.get("vapi_public_key")) or _text(row.get("vapi_api_key")),
        private_key=_text(row.get("vapi_private_key")),
        webhook_url=_text(row.get("vapi_webhook_url")),
    )
    return found if found != CredentialFields() else None


def from_settings_object(row: dict[str, Any]) -> CredentialFields | None:
    org_settings = row.get("settings")
    vapi = org_settings.get("vapi") if isinstance(org_settings, dict) else None
    if not isinstance(vapi, dict):
        return None
    found = CredentialFields(
        public_key=_text(vapi.get("publicKey")),
        private_key=_text(vapi.get("privateKey")) or _text(vapi.get("apiKey")),
        webhook_url=_text(vapi.get("webhookUrl")),
    )
    return found if found != CredentialFields() else None


def _load_legacy_blob(row: dict[str, Any]) -> dict[str, Any] | None:
    raw = row.get("vapi_settings")
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            log_event(
                "vapi_legacy_settings_unparseable",
                level=logging.WARNING,
                organization_id=row.get("id"),
            )
            return None
    return raw if isinstance(raw, dict) else None


def from_legacy_settings_column(row: dict[str, Any]) -> CredentialFields | None:
    blob = _load_legacy_blob(row)
    if blob is None:
        return None
    if blob.get("enabled") is False:
        raise CredentialsDisabled(str(row.get("id")))
    found = CredentialFields(
        public_key=_text(blob.get("publicKey")),
        private_key=_text(blob.get("privateKey")) or _text(blob.get("apiKey")),
        webhook_url=_text(blob.get("webhookUrl")),
    )
    return found if found != CredentialFields() else None


CredentialStrategy = Callable[[dict[str, Any]], "CredentialFields | None"]

CREDENTIAL_STRATEGIES: tuple[CredentialStrategy, ...] = (
    from_dedicated_columns,
    from_settings_object,
    from_legacy_settings_column,
)


def credentials_from_row(
    row: dict[str, Any],
    strategies: tuple[CredentialStrategy, ...] = CREDENTIAL_STRATEGIES,
) -> VapiCredentials | None:
    """Compose the strategies in order; the first source to supply a field wins it.

    Every strategy runs, so a disabled legacy blob vetoes keys found elsewhere.
    """
    merged = CredentialFields()
    try:
        for strategy in strategies:
            found = strategy(row)
            if found is not None:
                merged = found.merged_under(merged)
    except CredentialsDisabled:
        log_event("vapi_credentials_disabled", organization_id=row.get("id"))
        return None
    if not merged.private_key:
        return None
    return VapiCredentials(
        public_key=merged.public_key,
        private_key=merged.private_key,
        webhook_url=merged.webhook_url,
    )


class _CredentialCache:
    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[str, tuple[float, VapiCredentials]] = {}

    def get(self, organization_id: str, ttl_seconds: float) -> VapiCredentials | None:
        with self._lock:
            entry = self._entries.get(organization_id)
            if entry is None:
                return None
            stored_at, credentials = entry
            if time.monotonic() - stored_at > ttl_seconds:
                del self._entries[organization_id]
                return None
            return credentials

    def put(self, organization_id: str, credentials: VapiCredentials) -> None:
        with self._lock:
            self._entries[organization_id] = (time.monotonic(), credentials)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_cache = _CredentialCache()


def clear_credential_cache() -> None:
    _cache.clear()


def resolve_vapi_credentials(organization_id: str | None) -> VapiCredentials | None:
    """Resolve an organization's credentials; ``None`` means not configured.

    Never raises: read failures are logged and reported as not configured.
    """
    if not organization_id:
        return None
    ttl = settings.credential_cache_ttl_seconds
    if ttl > 0:
        cached = _cache.get(organization_id, ttl)
        if cached is not None:
            return cached
    try:
        row = store.get_organization_row(organization_id)
    except Exception as exc:
        log_event(
            "vapi_credentials_lookup_failed",
            level=logging.WARNING,
            organization_id=organization_id,
            exc=exc,
        )
        return None
    if not row:
        log_event("vapi_credentials_organization_missing", organization_id=organization_id)
        return None
    credentials = credentials_from_row(row)
    if credentials is None:
        log_event("vapi_credentials_not_configured", organization_id=organization_id)
        return None
    if ttl > 0:
        _cache.put(organization_id, credentials)
    return credentials
