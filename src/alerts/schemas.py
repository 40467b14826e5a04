"""Schema definitions for alert preferences and the dispatch pipeline.

``AlertPreference`` maps to the ``alert_preferences`` table: one user's
standing subscription, with every filter dimension optional. Range and
date dimensions are kept exactly as the preference form submitted them
(strings or numbers); the matcher parses them and rejects malformed
values, so a bad row never prevents the rest from loading.

``MatchEvent``, ``Release`` and ``ChannelSendRecord`` are the records that
flow from the scanner through the scheduler to the channel router.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Literal

from src.jobs.schemas import Job

Frequency = Literal["instant", "daily", "weekly"]

VALID_FREQUENCIES: frozenset[str] = frozenset({"instant", "daily", "weekly"})

Channel = Literal["site", "email", "whatsapp", "tzintuk"]

# Fan-out order; also the iteration order for enabled channels
CHANNELS: tuple[str, ...] = ("site", "email", "whatsapp", "tzintuk")

VALID_CHANNELS: frozenset[str] = frozenset(CHANNELS)

PHONE_CHANNEL = "tzintuk"

EMAIL_CHANNEL = "email"

SendStatus = Literal["sent", "failed", "skipped_quiet_hours", "skipped_volume_cap"]

VALID_SEND_STATUSES: frozenset[str] = frozenset({
    "sent",
    "failed",
    "skipped_quiet_hours",
    "skipped_volume_cap",
})

# Form values: strings such as "50", numbers, or empty/None for "unset"
RangeValue = str | int | float | None


@dataclass
class DeliveryMethods:
    """Per-channel opt-in flags."""

    site: bool = True
    email: bool = False
    whatsapp: bool = False
    tzintuk: bool = False

    def enabled(self) -> list[str]:
        return [ch for ch in CHANNELS if getattr(self, ch)]

    def to_dict(self) -> dict[str, bool]:
        return {ch: getattr(self, ch) for ch in CHANNELS}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DeliveryMethods":
        data = data or {}
        return cls(**{ch: bool(data.get(ch, ch == "site")) for ch in CHANNELS})


@dataclass
class DoNotDisturb:
    """Local-time window ("HH:MM" strings) during which delivery is held."""

    start: str
    end: str

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass
class AlertPreference:
    """A user's standing subscription describing which jobs should notify them.

    Attributes:
        owner_id: User who owns the alert.
        name: User-chosen alert name (shown in digests).
        alert_id: Unique identifier.
        location: City name or region identifier (``region_*``).
        frequency: instant, daily or weekly.
        notification_days: Weekday indices (0 = Sunday) on which delivery
            is allowed; empty means every day.
        do_not_disturb: Optional quiet-hours window.
        delivery: Per-channel enable flags.
        alert_email / alert_whatsapp_phone / alert_tzintuk_phone: Contact
            targets for this alert, falling back to the owner's profile.
        is_active: Paused alerts are never scanned.
        last_checked_at: Scanner cursor, advanced monotonically.
    """

    owner_id: str
    name: str
    alert_id: str = field(default_factory=lambda: f"alert_{uuid.uuid4().hex[:12]}")

    # Filter dimensions (unset = wildcard)
    location: str | None = None
    difficulty: str | None = None
    date_type: str | None = None
    specific_date_start: str | date | None = None
    specific_date_end: str | date | None = None
    min_duration_hours: RangeValue = None
    max_duration_hours: RangeValue = None
    filter_duration_flexible: str | None = None  # yes | no | any
    payment_kind: str | None = None  # any | hourly | global
    min_hourly_rate: RangeValue = None
    max_hourly_rate: RangeValue = None
    min_global_payment: RangeValue = None
    max_global_payment: RangeValue = None
    payment_methods: frozenset[str] = frozenset()
    min_people_needed: RangeValue = None
    max_people_needed: RangeValue = None
    suitability_for: str | None = None  # any | men | women | general
    min_age: RangeValue = None
    max_age: RangeValue = None

    # Scheduling
    frequency: str = "instant"
    notification_days: frozenset[int] = frozenset()
    do_not_disturb: DoNotDisturb | None = None

    # Delivery
    delivery: DeliveryMethods = field(default_factory=DeliveryMethods)
    alert_email: str | None = None
    alert_whatsapp_phone: str | None = None
    alert_tzintuk_phone: str | None = None
    owner_name: str | None = None
    owner_email: str | None = None
    owner_phone: str | None = None

    is_active: bool = True
    last_checked_at: datetime | None = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if self.frequency not in VALID_FREQUENCIES:
            raise ValueError(
                f"Invalid frequency {self.frequency!r}. "
                f"Must be one of: {sorted(VALID_FREQUENCIES)}"
            )
        self.payment_methods = frozenset(self.payment_methods)
        self.notification_days = frozenset(int(d) for d in self.notification_days)

    @property
    def is_deliverable(self) -> bool:
        """At least one channel must be enabled."""
        return bool(self.delivery.enabled())

    def covers(self, job: Job) -> bool:
        """Whether the scanner cursor already covers the job."""
        return self.last_checked_at is not None and self.last_checked_at >= job.posted_at

    def contact_for(self, channel: str) -> str | None:
        """Contact target for a channel, falling back to the owner's profile."""
        if channel == "email":
            return self.alert_email or self.owner_email
        if channel == "whatsapp":
            return self.alert_whatsapp_phone or self.owner_phone
        if channel == "tzintuk":
            return self.alert_tzintuk_phone or self.owner_phone
        return self.owner_id

    def filters_dict(self) -> dict[str, Any]:
        """Filter dimensions as a JSON-serializable dictionary."""
        start, end = self.specific_date_start, self.specific_date_end
        return {
            "location": self.location,
            "difficulty": self.difficulty,
            "date_type": self.date_type,
            "specific_date_start": start.isoformat() if isinstance(start, date) else start,
            "specific_date_end": end.isoformat() if isinstance(end, date) else end,
            "min_duration_hours": self.min_duration_hours,
            "max_duration_hours": self.max_duration_hours,
            "filter_duration_flexible": self.filter_duration_flexible,
            "payment_kind": self.payment_kind,
            "min_hourly_rate": self.min_hourly_rate,
            "max_hourly_rate": self.max_hourly_rate,
            "min_global_payment": self.min_global_payment,
            "max_global_payment": self.max_global_payment,
            "payment_methods": sorted(self.payment_methods),
            "min_people_needed": self.min_people_needed,
            "max_people_needed": self.max_people_needed,
            "suitability_for": self.suitability_for,
            "min_age": self.min_age,
            "max_age": self.max_age,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "alert_id": self.alert_id,
            "owner_id": self.owner_id,
            "name": self.name,
            **self.filters_dict(),
            "frequency": self.frequency,
            "notification_days": sorted(self.notification_days),
            "do_not_disturb": (
                self.do_not_disturb.to_dict() if self.do_not_disturb else None
            ),
            "delivery": self.delivery.to_dict(),
            "alert_email": self.alert_email,
            "alert_whatsapp_phone": self.alert_whatsapp_phone,
            "alert_tzintuk_phone": self.alert_tzintuk_phone,
            "owner_name": self.owner_name,
            "owner_email": self.owner_email,
            "owner_phone": self.owner_phone,
            "is_active": self.is_active,
            "last_checked_at": (
                self.last_checked_at.isoformat() if self.last_checked_at else None
            ),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertPreference":
        """Create an AlertPreference from a dictionary.

        Unknown keys are ignored; filter values are kept verbatim.

        Args:
            data: Dictionary with alert fields (flat or with a nested
                ``filters`` mapping as stored in the database).

        Returns:
            AlertPreference instance.
        """
        filters = dict(data.get("filters") or {})
        merged = {**filters, **data}

        dnd = merged.get("do_not_disturb")
        if isinstance(dnd, dict) and dnd.get("start") and dnd.get("end"):
            dnd = DoNotDisturb(start=dnd["start"], end=dnd["end"])
        elif not isinstance(dnd, DoNotDisturb):
            dnd = None

        delivery = merged.get("delivery")
        if not isinstance(delivery, DeliveryMethods):
            delivery = DeliveryMethods.from_dict(delivery)

        last_checked_at = merged.get("last_checked_at")
        if isinstance(last_checked_at, str):
            last_checked_at = datetime.fromisoformat(last_checked_at)

        created_at = merged.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        elif created_at is None:
            created_at = datetime.now(timezone.utc)

        filter_fields = {
            key: merged.get(key)
            for key in (
                "location", "difficulty", "date_type",
                "specific_date_start", "specific_date_end",
                "min_duration_hours", "max_duration_hours",
                "filter_duration_flexible", "payment_kind",
                "min_hourly_rate", "max_hourly_rate",
                "min_global_payment", "max_global_payment",
                "min_people_needed", "max_people_needed",
                "suitability_for", "min_age", "max_age",
            )
        }

        kwargs: dict[str, Any] = {}
        if merged.get("alert_id"):
            kwargs["alert_id"] = merged["alert_id"]

        return cls(
            owner_id=merged["owner_id"],
            name=merged.get("name") or "",
            **filter_fields,
            payment_methods=frozenset(merged.get("payment_methods") or ()),
            frequency=merged.get("frequency") or "instant",
            notification_days=frozenset(merged.get("notification_days") or ()),
            do_not_disturb=dnd,
            delivery=delivery,
            alert_email=merged.get("alert_email"),
            alert_whatsapp_phone=merged.get("alert_whatsapp_phone"),
            alert_tzintuk_phone=merged.get("alert_tzintuk_phone"),
            owner_name=merged.get("owner_name"),
            owner_email=merged.get("owner_email"),
            owner_phone=merged.get("owner_phone"),
            is_active=merged.get("is_active", True),
            last_checked_at=last_checked_at,
            created_at=created_at,
            **kwargs,
        )


@dataclass(frozen=True)
class MatchEvent:
    """A job satisfying an alert. ``(alert_id, job_id)`` is the dedup key."""

    alert_id: str
    job_id: str
    job_posted_at: datetime
    matched_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def key(self) -> tuple[str, str]:
        return (self.alert_id, self.job_id)

    def to_dict(self) -> dict[str, str]:
        return {
            "alert_id": self.alert_id,
            "job_id": self.job_id,
            "job_posted_at": self.job_posted_at.isoformat(),
            "matched_at": self.matched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MatchEvent":
        return cls(
            alert_id=data["alert_id"],
            job_id=data["job_id"],
            job_posted_at=datetime.fromisoformat(data["job_posted_at"]),
            matched_at=datetime.fromisoformat(data["matched_at"]),
        )


@dataclass
class Release:
    """A set of matches for one alert, released together to the router.

    ``jobs`` and ``events`` are aligned and ordered by posting time, oldest
    first. ``channels`` restricts the fan-out (None = every enabled channel).
    """

    alert: AlertPreference
    events: list[MatchEvent]
    jobs: list[Job]
    channels: frozenset[str] | None = None
    forced: bool = False


@dataclass
class ChannelSendRecord:
    """Outcome of one delivery attempt for one (alert, job, channel) triple."""

    channel: str
    alert_id: str
    job_id: str
    status: str
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    error: str | None = None
    attempted_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if self.channel not in VALID_CHANNELS:
            raise ValueError(
                f"Invalid channel {self.channel!r}. "
                f"Must be one of: {sorted(VALID_CHANNELS)}"
            )
        if self.status not in VALID_SEND_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. "
                f"Must be one of: {sorted(VALID_SEND_STATUSES)}"
            )
