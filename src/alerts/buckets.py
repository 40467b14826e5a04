"""
Shared dispatch state: digest buckets and deferred matches.

Digest buckets accumulate match events for one owner and one frequency
window until the window's fire time. Deferred matches are instant
matches (or single-channel re-sends) held back by a quiet-hours gate
until a known instant. Both exist in two flavours:

- Redis: buckets are lists plus a sorted-set schedule, read-and-cleared
  atomically in a MULTI block; deferred matches live in a sorted set
  scored by their release time.
- In-memory: plain dicts guarded by an asyncio.Lock, for single-process
  use and tests.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis

from src.alerts.schemas import MatchEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BucketKey:
    """Digest bucket identity: one owner, one frequency, one window."""

    owner_id: str
    frequency: str
    window_key: str

    def encode(self) -> str:
        return f"{self.frequency}:{self.window_key}:{self.owner_id}"

    @classmethod
    def decode(cls, raw: str) -> "BucketKey":
        frequency, window_key, owner_id = raw.split(":", 2)
        return cls(owner_id=owner_id, frequency=frequency, window_key=window_key)


@dataclass(frozen=True)
class BucketEntry:
    """A match event waiting in a digest bucket."""

    event: MatchEvent

    @property
    def alert_id(self) -> str:
        return self.event.alert_id

    def to_json(self) -> str:
        return json.dumps(self.event.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "BucketEntry":
        return cls(event=MatchEvent.from_dict(json.loads(raw)))


@dataclass(frozen=True)
class DeferredMatch:
    """A match held until ``not_before``.

    ``channels`` restricts the eventual release (None = every enabled
    channel), used when only the phone channel was held back.
    """

    event: MatchEvent
    not_before: datetime
    channels: frozenset[str] | None = None
    deferred_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def alert_id(self) -> str:
        return self.event.alert_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "deferred_id": self.deferred_id,
            "event": self.event.to_dict(),
            "not_before": self.not_before.isoformat(),
            "channels": sorted(self.channels) if self.channels is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeferredMatch":
        channels = data.get("channels")
        return cls(
            event=MatchEvent.from_dict(data["event"]),
            not_before=datetime.fromisoformat(data["not_before"]),
            channels=frozenset(channels) if channels is not None else None,
            deferred_id=data["deferred_id"],
        )


# ── Bucket stores ─────────────────────────────────────────


class BucketStore(ABC):
    """Abstract digest bucket storage."""

    @abstractmethod
    async def add(self, key: BucketKey, fire_at: datetime, entry: BucketEntry) -> None:
        """Append an entry, creating the bucket lazily with ``fire_at``."""

    @abstractmethod
    async def due(self, now: datetime) -> list[BucketKey]:
        """Keys of buckets whose fire time is at or before ``now``."""

    @abstractmethod
    async def take(self, key: BucketKey) -> list[BucketEntry]:
        """Atomically read and clear a bucket."""

    @abstractmethod
    async def all_keys(self) -> list[BucketKey]:
        """Keys of every non-empty bucket."""

    @abstractmethod
    async def remove_alert(self, alert_id: str) -> int:
        """Drop every pending entry of an alert. Returns the number removed."""

    @abstractmethod
    async def pending_count(self) -> int:
        """Number of buckets holding entries."""

    @abstractmethod
    async def next_fire_at(self) -> datetime | None:
        """Earliest fire time across pending buckets."""


class InMemoryBucketStore(BucketStore):
    """Process-local bucket store."""

    def __init__(self) -> None:
        self._entries: dict[BucketKey, list[BucketEntry]] = {}
        self._fire_at: dict[BucketKey, datetime] = {}
        self._lock = asyncio.Lock()

    async def add(self, key: BucketKey, fire_at: datetime, entry: BucketEntry) -> None:
        async with self._lock:
            self._entries.setdefault(key, []).append(entry)
            self._fire_at.setdefault(key, fire_at)

    async def due(self, now: datetime) -> list[BucketKey]:
        async with self._lock:
            return [k for k, at in self._fire_at.items() if at <= now]

    async def take(self, key: BucketKey) -> list[BucketEntry]:
        async with self._lock:
            self._fire_at.pop(key, None)
            return self._entries.pop(key, [])

    async def all_keys(self) -> list[BucketKey]:
        async with self._lock:
            return list(self._entries)

    async def remove_alert(self, alert_id: str) -> int:
        removed = 0
        async with self._lock:
            for key in list(self._entries):
                kept = [e for e in self._entries[key] if e.alert_id != alert_id]
                removed += len(self._entries[key]) - len(kept)
                if kept:
                    self._entries[key] = kept
                else:
                    del self._entries[key]
                    self._fire_at.pop(key, None)
        return removed

    async def pending_count(self) -> int:
        return len(self._entries)

    async def next_fire_at(self) -> datetime | None:
        return min(self._fire_at.values(), default=None)


class RedisBucketStore(BucketStore):
    """Redis bucket store.

    Layout:
        ``{prefix}:schedule``  sorted set, member = encoded key, score = fire_at
        ``{prefix}:{key}``     list of JSON-encoded match events
    """

    def __init__(self, client: redis.Redis, prefix: str = "alerts:bucket") -> None:
        self._redis = client
        self._prefix = prefix
        self._schedule = f"{prefix}:schedule"

    def _list_key(self, key: BucketKey) -> str:
        return f"{self._prefix}:{key.encode()}"

    async def add(self, key: BucketKey, fire_at: datetime, entry: BucketEntry) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(self._list_key(key), entry.to_json())
            pipe.zadd(self._schedule, {key.encode(): fire_at.timestamp()}, nx=True)
            await pipe.execute()

    async def due(self, now: datetime) -> list[BucketKey]:
        members = await self._redis.zrangebyscore(
            self._schedule, "-inf", now.timestamp(),
        )
        return [BucketKey.decode(m) for m in members]

    async def take(self, key: BucketKey) -> list[BucketEntry]:
        list_key = self._list_key(key)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrange(list_key, 0, -1)
            pipe.delete(list_key)
            pipe.zrem(self._schedule, key.encode())
            raw_entries, _, _ = await pipe.execute()
        return [BucketEntry.from_json(raw) for raw in raw_entries]

    async def all_keys(self) -> list[BucketKey]:
        members = await self._redis.zrange(self._schedule, 0, -1)
        return [BucketKey.decode(m) for m in members]

    async def remove_alert(self, alert_id: str) -> int:
        removed = 0
        for key in await self.all_keys():
            list_key = self._list_key(key)
            raw_entries = await self._redis.lrange(list_key, 0, -1)
            doomed = [
                raw for raw in raw_entries
                if BucketEntry.from_json(raw).alert_id == alert_id
            ]
            if not doomed:
                continue
            async with self._redis.pipeline(transaction=True) as pipe:
                for raw in doomed:
                    pipe.lrem(list_key, 0, raw)
                pipe.llen(list_key)
                results = await pipe.execute()
            removed += sum(results[:-1])
            if results[-1] == 0:
                await self._redis.zrem(self._schedule, key.encode())
        return removed

    async def pending_count(self) -> int:
        return await self._redis.zcard(self._schedule)

    async def next_fire_at(self) -> datetime | None:
        first = await self._redis.zrange(self._schedule, 0, 0, withscores=True)
        if not first:
            return None
        _, score = first[0]
        return datetime.fromtimestamp(score, tz=timezone.utc)


# ── Deferred stores ───────────────────────────────────────


class DeferredStore(ABC):
    """Abstract storage of deferred matches."""

    @abstractmethod
    async def add(self, item: DeferredMatch) -> None:
        """Hold a match until its ``not_before`` instant."""

    @abstractmethod
    async def take_due(self, now: datetime) -> list[DeferredMatch]:
        """Atomically remove and return every match due at ``now``."""

    @abstractmethod
    async def remove_alert(self, alert_id: str) -> int:
        """Drop every deferred match of an alert. Returns the number removed."""

    @abstractmethod
    async def count(self) -> int:
        """Number of deferred matches."""

    @abstractmethod
    async def next_at(self) -> datetime | None:
        """Earliest ``not_before`` across deferred matches."""


class InMemoryDeferredStore(DeferredStore):
    """Process-local deferred store."""

    def __init__(self) -> None:
        self._items: dict[str, DeferredMatch] = {}
        self._lock = asyncio.Lock()

    async def add(self, item: DeferredMatch) -> None:
        async with self._lock:
            self._items[item.deferred_id] = item

    async def take_due(self, now: datetime) -> list[DeferredMatch]:
        async with self._lock:
            due = [i for i in self._items.values() if i.not_before <= now]
            for item in due:
                del self._items[item.deferred_id]
        return sorted(due, key=lambda i: i.event.job_posted_at)

    async def remove_alert(self, alert_id: str) -> int:
        async with self._lock:
            doomed = [k for k, i in self._items.items() if i.alert_id == alert_id]
            for k in doomed:
                del self._items[k]
        return len(doomed)

    async def count(self) -> int:
        return len(self._items)

    async def next_at(self) -> datetime | None:
        return min((i.not_before for i in self._items.values()), default=None)


class RedisDeferredStore(DeferredStore):
    """Sorted set of JSON-encoded deferred matches scored by ``not_before``."""

    def __init__(self, client: redis.Redis, key: str = "alerts:deferred") -> None:
        self._redis = client
        self._key = key

    async def add(self, item: DeferredMatch) -> None:
        await self._redis.zadd(
            self._key, {json.dumps(item.to_dict()): item.not_before.timestamp()},
        )

    async def take_due(self, now: datetime) -> list[DeferredMatch]:
        score = now.timestamp()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrangebyscore(self._key, "-inf", score)
            pipe.zremrangebyscore(self._key, "-inf", score)
            raw_items, _ = await pipe.execute()
        items = [DeferredMatch.from_dict(json.loads(raw)) for raw in raw_items]
        return sorted(items, key=lambda i: i.event.job_posted_at)

    async def remove_alert(self, alert_id: str) -> int:
        raw_items = await self._redis.zrange(self._key, 0, -1)
        doomed = [
            raw for raw in raw_items
            if json.loads(raw)["event"]["alert_id"] == alert_id
        ]
        if not doomed:
            return 0
        return await self._redis.zrem(self._key, *doomed)

    async def count(self) -> int:
        return await self._redis.zcard(self._key)

    async def next_at(self) -> datetime | None:
        first = await self._redis.zrange(self._key, 0, 0, withscores=True)
        if not first:
            return None
        _, score = first[0]
        return datetime.fromtimestamp(score, tz=timezone.utc)
