from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 10_000


def compute_fingerprint(payload: Any) -> str:
    """Content hash of a parsed event body.

    Keys are sorted and whitespace is dropped before hashing, so a redelivered
    payload maps to the same fingerprint even if the sender re-serializes it.
    """
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _now_millis() -> int:
    return int(time.time() * 1000)


class IdempotencyLedger(Protocol):
    async def is_duplicate(self, fingerprint: str) -> bool: ...

    async def mark_processed(self, fingerprint: str) -> None: ...


class InMemoryIdempotencyLedger:
    """Process-local record of processed fingerprints.

    Entries expire after ``ttl_seconds``. Expired entries are dropped lazily on
    read, and all expired entries are swept once the ledger grows past
    ``max_entries``. Nothing survives a restart and nothing is shared between
    instances.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        self.ttl_millis = int(ttl_seconds * 1000)
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[str, int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, fingerprint: str) -> bool:
        now = self._clock()
        with self._lock:
            processed_at = self._entries.get(fingerprint)
            if processed_at is None:
                return False
            if now - processed_at < self.ttl_millis:
                return True
            del self._entries[fingerprint]
            return False

    def record(self, fingerprint: str) -> None:
        now = self._clock()
        with self._lock:
            self._entries[fingerprint] = now
            if len(self._entries) > self.max_entries:
                self._sweep_locked(now)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: int) -> int:
        expired = [key for key, processed_at in self._entries.items() if now - processed_at >= self.ttl_millis]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("swept %s expired ledger entries; %s remain", len(expired), len(self._entries))
        return len(expired)

    async def is_duplicate(self, fingerprint: str) -> bool:
        return self.contains(fingerprint)

    async def mark_processed(self, fingerprint: str) -> None:
        self.record(fingerprint)


class RedisIdempotencyLedger:
    """Ledger shared across instances, backed by Redis keys with a TTL."""

    def __init__(
        self,
        redis_client: "Redis",
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        key_prefix: str = "listing-sync:event:",
    ) -> None:
        self.redis = redis_client
        self.ttl_millis = max(1, int(ttl_seconds * 1000))
        self.key_prefix = key_prefix

    def _key(self, fingerprint: str) -> str:
        return f"{self.key_prefix}{fingerprint}"

    async def is_duplicate(self, fingerprint: str) -> bool:
        return bool(await self.redis.exists(self._key(fingerprint)))

    async def mark_processed(self, fingerprint: str) -> None:
        # SET NX PX: the first writer owns the key until it expires.
        created = await self.redis.set(self._key(fingerprint), _now_millis(), px=self.ttl_millis, nx=True)
        if not created:
            logger.debug("fingerprint=%s already recorded by another delivery", fingerprint[:12])

    async def close(self) -> None:
        await self.redis.aclose()
