"""Delayed transcript retrieval for calls that ended without one.

Each fetch is a discrete timer-driven unit of work. The retry state lives in
``TranscriptFetchAttempt`` values rather than in closures, so the attempt number
and delay of every pending fetch can be inspected. A call has at most one chain
at a time, from its first attempt until the chain ends. Pending attempts are held
in memory only; a restart drops them.
"""
from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, replace
from threading import Lock
from typing import Any, Callable, Literal

from src.config import settings
from src.domain.credentials import VapiCredentials, resolve_vapi_credentials
from src.events.calls import save_transcript
from src.observability import incr_metric, log_event
from src.providers.vapi import client as vapi_client
from src.providers.vapi.client import VapiProviderError


BackfillStatus = Literal["succeeded", "retry", "exhausted", "abandoned"]


@dataclass(frozen=True)
class TranscriptFetchAttempt:
    call_id: str
    organization_id: str | None
    delay_seconds: float
    attempt: int = 0
    request_id: str | None = None


@dataclass(frozen=True)
class BackfillOutcome:
    status: BackfillStatus
    attempt: TranscriptFetchAttempt
    next_attempt: TranscriptFetchAttempt | None = None
    reason: str | None = None


def _thread_timer(interval: float, function: Callable[..., Any], args: tuple[Any, ...]) -> threading.Timer:
    timer = threading.Timer(interval, function, args=args)
    timer.daemon = True
    return timer


def _fetch_call_from_vapi(credentials: VapiCredentials, call_id: str) -> dict[str, Any]:
    return vapi_client.get_call(
        credentials.private_key,
        call_id,
        base_url=settings.vapi_api_base_url,
        timeout_seconds=settings.vapi_request_timeout_seconds,
    )


class TranscriptBackfillScheduler:
    def __init__(
        self,
        *,
        initial_delay_seconds: float,
        max_retries: int,
        jitter_ratio: float = 0.0,
        timer_factory: Callable[..., Any] = _thread_timer,
        fetch_call: Callable[[VapiCredentials, str], dict[str, Any]] = _fetch_call_from_vapi,
        resolve_credentials: Callable[[str | None], VapiCredentials | None] = resolve_vapi_credentials,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.initial_delay_seconds = initial_delay_seconds
        self.max_retries = max(0, max_retries)
        if not 0.0 <= jitter_ratio < 1.0:
            raise ValueError("jitter_ratio must be in [0, 1) so a jittered delay stays below the next one")
        self.jitter_ratio = jitter_ratio
        self._timer_factory = timer_factory
        self._fetch_call = fetch_call
        self._resolve_credentials = resolve_credentials
        self._rng = rng
        self._lock = Lock()
        self._pending: dict[str, tuple[TranscriptFetchAttempt, Any]] = {}
        # A call stays reserved from its first attempt until its chain ends.
        self._active_calls: set[str] = set()
        self._closed = False

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def schedule_initial(
        self,
        call_id: str,
        organization_id: str | None,
        *,
        request_id: str | None = None,
    ) -> TranscriptFetchAttempt | None:
        with self._lock:
            if self._closed:
                return None
            already_active = call_id in self._active_calls
            if not already_active:
                self._active_calls.add(call_id)
        if already_active:
            incr_metric("vapi.transcript_backfill.already_active")
            log_event("vapi_transcript_backfill_already_scheduled", request_id=request_id, call_id=call_id)
            return None
        attempt = TranscriptFetchAttempt(
            call_id=call_id,
            organization_id=organization_id,
            delay_seconds=self.initial_delay_seconds,
            request_id=request_id,
        )
        self.schedule(attempt)
        return attempt

    def timer_interval(self, attempt: TranscriptFetchAttempt) -> float:
        if not self.jitter_ratio:
            return attempt.delay_seconds
        return attempt.delay_seconds + self._rng() * self.jitter_ratio * attempt.delay_seconds

    def schedule(self, attempt: TranscriptFetchAttempt) -> None:
        timer = self._timer_factory(self.timer_interval(attempt), self._fire, (attempt,))
        with self._lock:
            if self._closed:
                return
            self._pending[attempt.call_id] = (attempt, timer)
        incr_metric("vapi.transcript_backfill.scheduled")
        log_event(
            "vapi_transcript_backfill_scheduled",
            request_id=attempt.request_id,
            call_id=attempt.call_id,
            attempt=attempt.attempt + 1,
            max_attempts=self.max_attempts,
            delay_seconds=attempt.delay_seconds,
        )
        timer.start()

    def next_attempt(self, attempt: TranscriptFetchAttempt) -> TranscriptFetchAttempt | None:
        if attempt.attempt >= self.max_retries:
            return None
        return replace(attempt, attempt=attempt.attempt + 1, delay_seconds=attempt.delay_seconds * 2)

    def run_attempt(self, attempt: TranscriptFetchAttempt) -> BackfillOutcome:
        """Perform exactly one fetch for ``attempt`` and decide what happens next."""
        if not attempt.organization_id:
            return BackfillOutcome("abandoned", attempt, reason="organization_unresolved")
        credentials = self._resolve_credentials(attempt.organization_id)
        if credentials is None:
            return BackfillOutcome("abandoned", attempt, reason="not_configured")

        transcript: str | None = None
        reason = "transcript_not_ready"
        try:
            call = self._fetch_call(credentials, attempt.call_id)
            transcript = vapi_client.extract_call_transcript(call)
        except VapiProviderError as exc:
            if exc.category == "terminal":
                return BackfillOutcome("abandoned", attempt, reason=f"provider_{exc.category}")
            reason = f"provider_{exc.category}"
            log_event(
                "vapi_transcript_fetch_failed",
                level=logging.WARNING,
                request_id=attempt.request_id,
                call_id=attempt.call_id,
                attempt=attempt.attempt + 1,
                category=exc.category,
                exc=exc,
            )

        if transcript:
            save_transcript(attempt.call_id, transcript, request_id=attempt.request_id)
            return BackfillOutcome("succeeded", attempt)

        following = self.next_attempt(attempt)
        if following is None:
            return BackfillOutcome("exhausted", attempt, reason=reason)
        return BackfillOutcome("retry", attempt, next_attempt=following, reason=reason)

    def _fire(self, attempt: TranscriptFetchAttempt) -> None:
        with self._lock:
            current = self._pending.get(attempt.call_id)
            if current is not None and current[0] == attempt:
                del self._pending[attempt.call_id]
        try:
            outcome = self.run_attempt(attempt)
        except Exception as exc:
            following = self.next_attempt(attempt)
            outcome = BackfillOutcome(
                "retry" if following else "exhausted",
                attempt,
                next_attempt=following,
                reason="unexpected_error",
            )
            log_event(
                "vapi_transcript_backfill_attempt_crashed",
                level=logging.ERROR,
                request_id=attempt.request_id,
                call_id=attempt.call_id,
                attempt=attempt.attempt + 1,
                exc=exc,
            )
        self._record(outcome)
        if outcome.next_attempt is None:
            with self._lock:
                self._active_calls.discard(attempt.call_id)
            return
        self.schedule(outcome.next_attempt)

    def _record(self, outcome: BackfillOutcome) -> None:
        metric = {
            "succeeded": "vapi.transcript_backfill.succeeded",
            "retry": "vapi.transcript_backfill.retried",
            "exhausted": "vapi.transcript_backfill.exhausted",
            "abandoned": "vapi.transcript_backfill.abandoned",
        }[outcome.status]
        incr_metric(metric)
        log_event(
            f"vapi_transcript_backfill_{outcome.status}",
            level=logging.WARNING if outcome.status in {"exhausted", "abandoned"} else logging.INFO,
            request_id=outcome.attempt.request_id,
            call_id=outcome.attempt.call_id,
            attempt=outcome.attempt.attempt + 1,
            max_attempts=self.max_attempts,
            reason=outcome.reason,
        )

    def pending(self) -> list[TranscriptFetchAttempt]:
        with self._lock:
            return [attempt for attempt, _ in self._pending.values()]

    def is_active(self, call_id: str) -> bool:
        with self._lock:
            return call_id in self._active_calls

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            timers = [timer for _, timer in self._pending.values()]
            self._pending.clear()
            self._active_calls.clear()
        for timer in timers:
            timer.cancel()


_scheduler: TranscriptBackfillScheduler | None = None
_scheduler_lock = Lock()


def get_backfill_scheduler() -> TranscriptBackfillScheduler:
    global _scheduler
    with _scheduler_lock:
        if _scheduler is None:
            _scheduler = TranscriptBackfillScheduler(
                initial_delay_seconds=settings.transcript_backfill_initial_delay_seconds,
                max_retries=settings.transcript_backfill_max_retries,
                jitter_ratio=settings.transcript_backfill_jitter_ratio,
            )
        return _scheduler


def set_backfill_scheduler(scheduler: TranscriptBackfillScheduler | None) -> None:
    global _scheduler
    with _scheduler_lock:
        _scheduler = scheduler


def shutdown_backfill_scheduler() -> None:
    with _scheduler_lock:
        scheduler = _scheduler
    if scheduler is not None:
        scheduler.shutdown()
