#!/usr/bin/env python3
"""
Send a signed sample Vapi webhook to a running instance.

Run from project root: python scripts/send_vapi_webhook.py --type call-ended --call-id c1 --public-key pk_...
"""

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from uuid import uuid4

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

import httpx

from src.domain.signatures import compute_vapi_signature


def build_payload(event_type: str, call_id: str, organization_id: str | None, transcript: str | None) -> dict:
    call: dict = {"id": call_id}
    if organization_id:
        call["organizationId"] = organization_id
    if event_type == "call-started":
        call["startedAt"] = datetime.now(timezone.utc).isoformat()
    if event_type in {"call-ended", "end-of-call-report"}:
        call["endedAt"] = datetime.now(timezone.utc).isoformat()
        call["endedReason"] = "customer-ended-call"
        call["duration"] = 42
        if transcript:
            call["transcript"] = transcript
    payload = {"id": f"evt_{uuid4().hex}", "type": event_type, "call": call}
    if event_type == "transcript" and transcript:
        payload["transcript"] = transcript
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(description="Send a signed Vapi webhook event.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--type", dest="event_type", default="call-started")
    parser.add_argument("--call-id", default=f"call_{uuid4().hex[:12]}")
    parser.add_argument("--organization-id", default=None)
    parser.add_argument("--transcript", default=None)
    parser.add_argument("--public-key", default=os.getenv("VAPI_PUBLIC_KEY", ""))
    args = parser.parse_args()

    payload = build_payload(args.event_type, args.call_id, args.organization_id, args.transcript)
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if args.public_key:
        headers["x-vapi-signature"] = compute_vapi_signature(body, args.public_key)

    endpoint = f"{args.base_url.rstrip('/')}/api/vapi/webhook"
    response = httpx.post(endpoint, content=body, headers=headers, timeout=15.0)
    print(f"{response.status_code} {payload['id']} {response.text}")
    return 0 if response.status_code < 400 else 1


if __name__ == "__main__":
    sys.exit(main())
