from __future__ import annotations

from typing import Any

import httpx


VAPI_API_BASE = "https://api.vapi.ai"
_TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}

_EP_CALL = "/call/{call_id}"


class VapiProviderError(Exception):
    """Provider-level exception for Vapi integration failures."""

    def __init__(self, message: str, *, category: str = "unknown", status_code: int | None = None) -> None:
        super().__init__(message)
        self._category = category
        self.status_code = status_code

    @property
    def category(self) -> str:
        return self._category

    @property
    def retryable(self) -> bool:
        return self._category in {"transient", "not_found"}


def _build_base_url(base_url: str | None) -> str:
    return (base_url or VAPI_API_BASE).rstrip("/")


def _request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    timeout_seconds: float,
) -> httpx.Response:
    with httpx.Client(timeout=timeout_seconds) as client:
        return client.request(method=method, url=url, headers=headers)


def _request_json(
    *,
    method: str,
    path: str,
    api_key: str,
    base_url: str | None = None,
    timeout_seconds: float = 10.0,
) -> Any:
    if not api_key:
        raise VapiProviderError("Missing Vapi API key", category="terminal")

    url = f"{_build_base_url(base_url)}{path}"
    headers = {"Accept": "application/json", "Authorization": f"Bearer {api_key}"}
    try:
        response = _request(method=method, url=url, headers=headers, timeout_seconds=timeout_seconds)
    except httpx.TimeoutException as exc:
        raise VapiProviderError(f"Vapi request timed out: {exc}", category="transient") from exc
    except httpx.HTTPError as exc:
        raise VapiProviderError(f"Vapi connectivity error: {exc}", category="transient") from exc

    if response.status_code in {401, 403}:
        raise VapiProviderError("Invalid Vapi API key", category="terminal", status_code=response.status_code)
    if response.status_code == 404:
        raise VapiProviderError(f"Vapi resource not found: {path}", category="not_found", status_code=404)
    if response.status_code in _TRANSIENT_STATUS_CODES:
        raise VapiProviderError(
            f"Vapi API returned HTTP {response.status_code}",
            category="transient",
            status_code=response.status_code,
        )
    if response.status_code >= 400:
        raise VapiProviderError(
            f"Vapi API returned HTTP {response.status_code}: {response.text[:200]}",
            category="terminal",
            status_code=response.status_code,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise VapiProviderError("Vapi returned non-JSON response", category="unknown") from exc


def get_call(
    api_key: str,
    call_id: str,
    base_url: str | None = None,
    timeout_seconds: float = 10.0,
) -> dict[str, Any]:
    data = _request_json(
        method="GET",
        path=_EP_CALL.format(call_id=call_id),
        api_key=api_key,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
    )
    if not isinstance(data, dict):
        raise VapiProviderError("Unexpected Vapi call payload", category="unknown")
    return data


def extract_call_transcript(call: dict[str, Any]) -> str | None:
    """Return the transcript of a fetched call, or None when it is not ready yet."""
    artifact = call.get("artifact") if isinstance(call.get("artifact"), dict) else {}
    for candidate in (call.get("transcript"), artifact.get("transcript")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return None
