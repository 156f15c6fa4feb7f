from __future__ import annotations

from typing import Literal


NormalizedEventType = Literal[
    "call-started",
    "call-ended",
    "transcript",
    "analysis-complete",
    "speech-update",
    "recording-ready",
    "unknown",
]

_EVENT_TYPE_ALIASES: dict[str, NormalizedEventType] = {
    "call-started": "call-started",
    "call-ended": "call-ended",
    "end-of-call-report": "call-ended",
    "transcript": "transcript",
    "transcript-complete": "transcript",
    "transcription-complete": "transcript",
    "analysis-complete": "analysis-complete",
    "speech-update": "speech-update",
    "status-update": "speech-update",
    "recording-ready": "recording-ready",
    "recording-available": "recording-ready",
}

SUPPORTED_EVENT_TYPES: tuple[str, ...] = tuple(_EVENT_TYPE_ALIASES)


def normalize_event_type(value: str | None) -> NormalizedEventType:
    if not value:
        return "unknown"
    key = str(value).strip().lower().replace("_", "-")
    return _EVENT_TYPE_ALIASES.get(key, "unknown")

