from datetime import datetime, timezone

from src.events import ai_trigger, handlers
from src.events.backfill import get_backfill_scheduler
from src.events.context import EventContext
from src.events.pipeline import process_webhook_event
from src.observability import metric_total


CALL_ROW_ID = "5f0c3c1e-8a47-4b8e-9d2a-3e6f1b7c9a10"


def _ctx(payload: dict, *, event_id: str = "evt-1", organization_id: str | None = "org-1") -> EventContext:
    return EventContext(
        event_id=event_id,
        event_type=payload.get("type", "unknown"),
        payload=payload,
        received_at=datetime(2026, 3, 1, 10, 5, tzinfo=timezone.utc),
        organization_id=organization_id,
    )


def _existing_call(**overrides) -> dict:
    row = {
        "id": CALL_ROW_ID,
        "vapi_call_id": "call-1",
        "organization_id": "org-1",
        "status": "in-progress",
        "cost": 1.25,
        "started_at": "2026-03-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row


def _record_ai_triggers(monkeypatch) -> list[str]:
    triggered: list[str] = []
    monkeypatch.setattr(
        ai_trigger,
        "trigger_ai_processing",
        lambda call_id, request_id=None: triggered.append(call_id),
    )
    return triggered


def test_call_started_records_metadata_and_upserts(fake_db):
    payload = {
        "type": "call-started",
        "call": {
            "id": "call-9",
            "assistantId": "asst-1",
            "phoneNumber": "+15550009999",
            "metadata": {"campaignId": "camp-1", "leadId": "lead-1"},
        },
    }
    handlers.route_event(_ctx(payload))
    handlers.route_event(_ctx(payload))

    calls = fake_db.tables["calls"]
    assert len(calls) == 1
    assert calls[0]["status"] == "in-progress"
    assert calls[0]["assistant_id"] == "asst-1"
    assert calls[0]["phone_number"] == "+15550009999"
    assert calls[0]["campaign_id"] == "camp-1"
    assert calls[0]["lead_id"] == "lead-1"
    assert calls[0]["started_at"]


def test_call_ended_keeps_fields_the_payload_omits_and_schedules_backfill(fake_db, timers):
    fake_db.tables["calls"].append(_existing_call())
    payload = {
        "type": "end-of-call-report",
        "call": {
            "id": "call-1",
            "endedAt": "2026-03-01T10:04:00+00:00",
            "endedReason": "customer-ended-call",
            "duration": 240,
        },
    }
    handlers.route_event(_ctx(payload))

    row = fake_db.tables["calls"][0]
    assert row["status"] == "completed"
    assert row["ended_at"] == "2026-03-01T10:04:00+00:00"
    assert row["end_reason"] == "customer-ended-call"
    assert row["duration"] == 240
    assert row["cost"] == 1.25
    assert row["started_at"] == "2026-03-01T10:00:00+00:00"
    assert row["raw_webhook_data"] == payload["call"]
    assert row["vapi_webhook_received_at"] == "2026-03-01T10:05:00+00:00"
    assert "transcript" not in row

    assert len(timers.timers) == 1
    assert timers.timers[0].interval == 5.0
    assert timers.timers[0].started
    assert [attempt.call_id for attempt in get_backfill_scheduler().pending()] == ["call-1"]
    assert fake_db.tables["ai_processing_queue"] == []


def test_call_ended_with_transcript_triggers_ai_without_backfill(fake_db, timers):
    fake_db.tables["calls"].append(_existing_call())
    payload = {
        "type": "call-ended",
        "call": {"id": "call-1", "transcript": "Agent: hi\nCustomer: hello", "cost": 2.5},
    }
    handlers.route_event(_ctx(payload))

    row = fake_db.tables["calls"][0]
    assert row["transcript"] == "Agent: hi\nCustomer: hello"
    assert row["cost"] == 2.5
    assert timers.timers == []
    jobs = fake_db.tables["ai_processing_queue"]
    assert len(jobs) == 1
    assert jobs[0]["call_id"] == CALL_ROW_ID
    assert jobs[0]["status"] == "pending"


def test_transcript_event_saves_and_triggers_ai_once(monkeypatch, fake_db):
    fake_db.tables["calls"].append(_existing_call())
    triggered = _record_ai_triggers(monkeypatch)

    handlers.route_event(_ctx({"type": "transcript", "call": {"id": "call-1"}, "transcript": "full text"}))

    row = fake_db.tables["calls"][0]
    assert row["transcript"] == "full text"
    assert row["transcript_received_at"]
    assert triggered == [CALL_ROW_ID]


def test_transcript_matches_call_by_internal_id(monkeypatch, fake_db):
    fake_db.tables["calls"].append(_existing_call())
    triggered = _record_ai_triggers(monkeypatch)

    handlers.route_event(
        _ctx({"type": "transcription-complete", "callId": CALL_ROW_ID, "message": {"transcript": "from message"}})
    )

    assert fake_db.tables["calls"][0]["transcript"] == "from message"
    assert triggered == [CALL_ROW_ID]


def test_transcript_for_unknown_call_does_not_trigger_ai(monkeypatch, fake_db):
    triggered = _record_ai_triggers(monkeypatch)
    handlers.route_event(_ctx({"type": "transcript", "call": {"id": "ghost"}, "transcript": "text"}))
    assert triggered == []
    assert fake_db.tables["calls"] == []


def test_transcript_without_text_is_skipped(monkeypatch, fake_db):
    fake_db.tables["calls"].append(_existing_call())
    triggered = _record_ai_triggers(monkeypatch)
    handlers.route_event(_ctx({"type": "transcript", "call": {"id": "call-1"}, "transcript": "   "}))
    assert "transcript" not in fake_db.tables["calls"][0]
    assert triggered == []


def test_analysis_complete_stores_analysis(fake_db):
    fake_db.tables["calls"].append(_existing_call())
    analysis = {"sentiment": "positive", "keyPoints": ["budget ok"], "outcome": "interested", "qualityScore": 8}
    handlers.route_event(_ctx({"type": "analysis-complete", "call": {"id": "call-1"}, "analysis": analysis}))

    row = fake_db.tables["calls"][0]
    assert row["analysis_data"] == analysis
    assert row["sentiment"] == "positive"
    assert row["key_points"] == ["budget ok"]
    assert row["outcome"] == "interested"
    assert row["call_quality_score"] == 8


def test_speech_update_and_status_update_alias_store_partial_transcript(fake_db):
    fake_db.tables["calls"].append(_existing_call())
    handlers.route_event(_ctx({"type": "speech-update", "call": {"id": "call-1"}, "message": {"transcript": "Hel"}}))
    assert fake_db.tables["calls"][0]["partial_transcript"] == "Hel"

    handlers.route_event(_ctx({"type": "status_update", "call": {"id": "call-1"}, "message": {"transcript": "Hello"}}))
    assert fake_db.tables["calls"][0]["partial_transcript"] == "Hello"


def test_recording_ready_reads_nested_recording_url(fake_db):
    fake_db.tables["calls"].append(_existing_call())
    handlers.route_event(
        _ctx({"type": "recording-available", "call": {"id": "call-1", "recording": {"url": "https://rec/1.mp3"}}})
    )
    assert fake_db.tables["calls"][0]["recording_url"] == "https://rec/1.mp3"


def test_unknown_event_type_is_ignored(fake_db):
    fake_db.tables["calls"].append(_existing_call())
    normalized = handlers.route_event(_ctx({"type": "hang", "call": {"id": "call-1"}}))
    assert normalized == "unknown"
    assert fake_db.writes("calls") == []
    assert metric_total("vapi.webhook.unhandled") == 1


def test_missing_call_id_is_skipped(fake_db):
    handlers.route_event(_ctx({"type": "call-started", "call": {}}))
    assert fake_db.writes("calls") == []


def test_persistence_failure_writes_error_audit_entry(fake_db):
    fake_db.tables["calls"].append(_existing_call())
    fake_db.failures.add(("calls", "update"))

    result = process_webhook_event(
        _ctx({"type": "recording-ready", "call": {"id": "call-1", "recordingUrl": "https://rec/2.mp3"}})
    )

    assert result == "processed"
    error_entries = [row for row in fake_db.tables["webhook_logs"] if row["webhook_type"] == "vapi-error"]
    assert len(error_entries) == 1
    assert error_entries[0]["response_status"] == 500
    assert "simulated update failure" in error_entries[0]["response_body"]["error"]
    assert metric_total("vapi.call.update_failed") == 1


def test_handler_crash_is_contained_and_audited(monkeypatch, fake_db):
    def _boom(_ctx):
        raise RuntimeError("handler exploded")

    monkeypatch.setitem(handlers.EVENT_HANDLERS, "call-started", _boom)
    result = process_webhook_event(_ctx({"type": "call-started", "call": {"id": "call-1"}}))

    assert result == "failed"
    error_entries = [row for row in fake_db.tables["webhook_logs"] if row["webhook_type"] == "vapi-error"]
    assert error_entries[0]["response_body"] == {"error": "handler exploded", "error_type": "RuntimeError"}


def test_failed_call_ended_update_still_schedules_backfill(fake_db, timers):
    fake_db.tables["calls"].append(_existing_call())
    fake_db.failures.add(("calls", "update"))

    process_webhook_event(_ctx({"type": "call-ended", "call": {"id": "call-1", "endedReason": "hangup"}}))

    assert len(timers.timers) == 1
    assert fake_db.tables["calls"][0]["status"] == "in-progress"


def test_call_ended_with_short_provider_id_marks_call_completed(fake_db, timers):
    fake_db.tables["calls"].append(_existing_call(vapi_call_id="c1"))

    process_webhook_event(_ctx({"type": "call-ended", "call": {"id": "c1", "endedReason": "hangup"}}))

    row = fake_db.tables["calls"][0]
    assert row["status"] == "completed"
    assert row["end_reason"] == "hangup"
    assert metric_total("vapi.call.update_failed") == 0


def test_call_id_with_filter_syntax_updates_no_other_call(fake_db, timers):
    fake_db.tables["calls"].append(_existing_call())

    result = process_webhook_event(
        _ctx({"type": "recording-ready", "call": {"id": "x,vapi_call_id.eq.call-1", "recordingUrl": "https://rec/3.mp3"}})
    )

    assert result == "processed"
    assert "recording_url" not in fake_db.tables["calls"][0]
    assert metric_total("vapi.call.update_failed") == 0
