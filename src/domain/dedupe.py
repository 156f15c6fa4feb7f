"""Processed-event tracking for webhook redeliveries.

The provider delivers at least once, so the same event id can arrive more than
once. The in-memory backend is process-local: it bounds memory with a TTL and a
size cap and it does not survive restarts, so it only gives an at-most-once
guarantee per process. Horizontally scaled deployments should use the redis
backend, which shares the processed set between instances.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Protocol

import redis

from src.config import settings


class EventDeduplicator(Protocol):
    backend: str

    def check_and_mark(self, event_id: str) -> bool:
        """Mark ``event_id`` seen and return True if it had already been processed."""
        ...

    def size(self) -> int | None: ...


class InMemoryEventDeduplicator:
    backend = "memory"

    def __init__(self, *, ttl_seconds: float, max_entries: int, clock=time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = Lock()
        self._seen: OrderedDict[str, float] = OrderedDict()

    def _expire(self, now: float) -> None:
        while self._seen:
            oldest_id, seen_at = next(iter(self._seen.items()))
            if now - seen_at <= self._ttl_seconds and len(self._seen) <= self._max_entries:
                break
            del self._seen[oldest_id]

    def check_and_mark(self, event_id: str) -> bool:
        with self._lock:
            now = self._clock()
            self._expire(now)
            if event_id in self._seen:
                return True
            self._seen[event_id] = now
            if len(self._seen) > self._max_entries:
                self._seen.popitem(last=False)
            return False

    def size(self) -> int | None:
        with self._lock:
            self._expire(self._clock())
            return len(self._seen)


class RedisEventDeduplicator:
    backend = "redis"
    key_prefix = "vapi:webhook:event:"

    def __init__(self, client: Any, *, ttl_seconds: int) -> None:
        self._client = client
        self._ttl_seconds = max(1, int(ttl_seconds))

    def check_and_mark(self, event_id: str) -> bool:
        created = self._client.set(f"{self.key_prefix}{event_id}", "1", nx=True, ex=self._ttl_seconds)
        return not created

    def size(self) -> int | None:
        # Counting keys would need a SCAN across the shared keyspace.
        return None


def build_event_deduplicator() -> EventDeduplicator:
    backend = settings.webhook_dedupe_backend.strip().lower()
    if backend == "redis":
        client = redis.Redis.from_url(settings.redis_url)
        return RedisEventDeduplicator(client, ttl_seconds=settings.webhook_dedupe_ttl_seconds)
    if backend != "memory":
        raise ValueError(f"Unsupported webhook dedupe backend: {settings.webhook_dedupe_backend}")
    return InMemoryEventDeduplicator(
        ttl_seconds=settings.webhook_dedupe_ttl_seconds,
        max_entries=settings.webhook_dedupe_max_entries,
    )


_deduplicator: EventDeduplicator | None = None
_deduplicator_lock = Lock()


def get_event_deduplicator() -> EventDeduplicator:
    global _deduplicator
    with _deduplicator_lock:
        if _deduplicator is None:
            _deduplicator = build_event_deduplicator()
        return _deduplicator


def set_event_deduplicator(deduplicator: EventDeduplicator | None) -> None:
    global _deduplicator
    with _deduplicator_lock:
        _deduplicator = deduplicator
