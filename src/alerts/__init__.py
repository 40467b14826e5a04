"""Job-alert matching and dispatch scheduling.

Components:
- AlertPreference / MatchEvent / Release: Dataclasses for alerts and matches
- AlertConfig / DispatchSettings: Pydantic settings for scheduling and dispatch
- matches: Pure predicate deciding whether a job satisfies an alert
- AlertPreferenceRepository / SendRecordRepository: Persistence
- AlertScanner: Evaluates a new job against every active alert
- DispatchScheduler: Instant release, deferral and digest buckets
- VolumeLimiter: Daily phone-call cap
- VALID_FREQUENCIES / VALID_CHANNELS: Frozensets for runtime validation

The engine orchestrator (``src.alerts.service.AlertEngine``) and the ticker
(``src.alerts.ticker.AlertTicker``) depend on ``src.delivery`` and are
imported from their modules directly.
"""

from src.alerts.buckets import (
    BucketKey,
    BucketStore,
    DeferredMatch,
    DeferredStore,
    InMemoryBucketStore,
    InMemoryDeferredStore,
    RedisBucketStore,
    RedisDeferredStore,
)
from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.matching import MalformedAlertError, has_dimensions, matches
from src.alerts.repository import AlertPreferenceRepository, SendRecordRepository
from src.alerts.scanner import AlertScanner, ScanResult
from src.alerts.scheduler import DispatchScheduler, TickResult
from src.alerts.schemas import (
    CHANNELS,
    VALID_CHANNELS,
    VALID_FREQUENCIES,
    VALID_SEND_STATUSES,
    AlertPreference,
    ChannelSendRecord,
    DeliveryMethods,
    DoNotDisturb,
    MatchEvent,
    Release,
)
from src.alerts.volume import VolumeLimiter, VolumeLimiterError

__all__ = [
    "AlertConfig",
    "AlertPreference",
    "AlertPreferenceRepository",
    "AlertScanner",
    "BucketKey",
    "BucketStore",
    "CHANNELS",
    "ChannelSendRecord",
    "DeferredMatch",
    "DeferredStore",
    "DeliveryMethods",
    "DispatchScheduler",
    "DispatchSettings",
    "DoNotDisturb",
    "InMemoryBucketStore",
    "InMemoryDeferredStore",
    "MalformedAlertError",
    "MatchEvent",
    "RedisBucketStore",
    "RedisDeferredStore",
    "Release",
    "ScanResult",
    "SendRecordRepository",
    "TickResult",
    "VALID_CHANNELS",
    "VALID_FREQUENCIES",
    "VALID_SEND_STATUSES",
    "VolumeLimiter",
    "VolumeLimiterError",
    "has_dimensions",
    "matches",
]
