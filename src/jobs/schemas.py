"""Schema definitions for posted jobs.

Maps 1:1 to the ``jobs`` table. A job is immutable after creation (it can
only be deleted by its poster), so the alert engine treats it as a plain
value: the scanner evaluates it against every active alert and the
channel senders render it into notifications.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Literal

PaymentKind = Literal["hourly", "global"]

VALID_PAYMENT_KINDS: frozenset[str] = frozenset({"hourly", "global"})

DateType = Literal["today", "comingWeek", "flexible", "specificDate"]

VALID_DATE_TYPES: frozenset[str] = frozenset({
    "today",
    "comingWeek",
    "flexible",
    "specificDate",
})

Difficulty = Literal["easy", "medium", "hard"]

VALID_DIFFICULTIES: frozenset[str] = frozenset({"easy", "medium", "hard"})

PaymentMethod = Literal["cash_on_completion", "bank_transfer", "payslip"]

VALID_PAYMENT_METHODS: frozenset[str] = frozenset({
    "cash_on_completion",
    "bank_transfer",
    "payslip",
})


@dataclass
class JobSuitability:
    """Who the job is suitable for.

    ``general`` marks a job open to everyone; ``min_age`` is optional.
    """

    men: bool = False
    women: bool = False
    general: bool = True
    min_age: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "men": self.men,
            "women": self.women,
            "general": self.general,
            "min_age": self.min_age,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobSuitability":
        data = data or {}
        return cls(
            men=bool(data.get("men", False)),
            women=bool(data.get("women", False)),
            general=bool(data.get("general", True)),
            min_age=data.get("min_age"),
        )


@dataclass
class Job:
    """A posted work item.

    Attributes:
        job_id: Unique identifier.
        title: Short title shown in notifications.
        area: City or region string the job takes place in.
        payment_kind: ``hourly`` or ``global`` (fixed amount).
        hourly_rate: Rate per hour when payment_kind is hourly.
        global_amount: Total payment when payment_kind is global.
        payment_method: How the worker is paid.
        difficulty: Physical difficulty level.
        suitability: Target audience flags and minimum age.
        date_type: When the job happens.
        specific_date: Calendar date when date_type is specificDate.
        duration_hours: Estimated duration in hours.
        duration_flexible: Whether the duration is open-ended.
        people_needed: Number of workers wanted.
        poster_id: User who posted the job.
        posted_at: Creation timestamp.
    """

    title: str
    area: str
    poster_id: str
    payment_kind: str = "hourly"
    hourly_rate: float | None = None
    global_amount: float | None = None
    payment_method: str | None = None
    difficulty: str | None = None
    suitability: JobSuitability = field(default_factory=JobSuitability)
    date_type: str = "flexible"
    specific_date: date | None = None
    duration_hours: float | None = None
    duration_flexible: bool = False
    people_needed: int | None = None
    description: str = ""
    job_id: str = field(default_factory=lambda: f"job_{uuid.uuid4().hex[:12]}")
    posted_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if self.payment_kind not in VALID_PAYMENT_KINDS:
            raise ValueError(
                f"Invalid payment_kind {self.payment_kind!r}. "
                f"Must be one of: {sorted(VALID_PAYMENT_KINDS)}"
            )
        if self.date_type not in VALID_DATE_TYPES:
            raise ValueError(
                f"Invalid date_type {self.date_type!r}. "
                f"Must be one of: {sorted(VALID_DATE_TYPES)}"
            )

    @property
    def rate(self) -> float | None:
        """The payment amount for the job's own payment kind."""
        if self.payment_kind == "hourly":
            return self.hourly_rate
        return self.global_amount

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "job_id": self.job_id,
            "title": self.title,
            "area": self.area,
            "poster_id": self.poster_id,
            "payment_kind": self.payment_kind,
            "hourly_rate": self.hourly_rate,
            "global_amount": self.global_amount,
            "payment_method": self.payment_method,
            "difficulty": self.difficulty,
            "suitability": self.suitability.to_dict(),
            "date_type": self.date_type,
            "specific_date": (
                self.specific_date.isoformat() if self.specific_date else None
            ),
            "duration_hours": self.duration_hours,
            "duration_flexible": self.duration_flexible,
            "people_needed": self.people_needed,
            "description": self.description,
            "posted_at": self.posted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        """Create a Job from a dictionary (API payload or DB row).

        Args:
            data: Dictionary with job fields.

        Returns:
            Job instance.
        """
        posted_at = data.get("posted_at")
        if isinstance(posted_at, str):
            posted_at = datetime.fromisoformat(posted_at)
        elif posted_at is None:
            posted_at = datetime.now(timezone.utc)

        specific_date = data.get("specific_date")
        if isinstance(specific_date, str):
            specific_date = date.fromisoformat(specific_date[:10])

        suitability = data.get("suitability")
        if not isinstance(suitability, JobSuitability):
            suitability = JobSuitability.from_dict(suitability)

        kwargs: dict[str, Any] = {}
        if data.get("job_id"):
            kwargs["job_id"] = data["job_id"]

        return cls(
            title=data["title"],
            area=data.get("area") or "",
            poster_id=data["poster_id"],
            payment_kind=data.get("payment_kind", "hourly"),
            hourly_rate=data.get("hourly_rate"),
            global_amount=data.get("global_amount"),
            payment_method=data.get("payment_method"),
            difficulty=data.get("difficulty"),
            suitability=suitability,
            date_type=data.get("date_type", "flexible"),
            specific_date=specific_date,
            duration_hours=data.get("duration_hours"),
            duration_flexible=bool(data.get("duration_flexible", False)),
            people_needed=data.get("people_needed"),
            description=data.get("description", ""),
            posted_at=posted_at,
            **kwargs,
        )
