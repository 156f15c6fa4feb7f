from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class EventContext:
    """One acknowledged webhook event on its way through background processing."""
    event_id: str
    event_type: str
    payload: dict[str, Any]
    received_at: datetime
    organization_id: str | None = None
    request_id: str | None = None
    event_id_synthesized: bool = False
