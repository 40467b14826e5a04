"""
Request and response models for the job-alerts API.
"""

import datetime as dt

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        default="error",
        description="Error type",
    )


class ComponentHealth(BaseModel):
    """Health of a single infrastructure component."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency")
    details: dict = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    pending_buckets: int = Field(default=0, description="Digest buckets not yet flushed")
    deferred_matches: int = Field(default=0, description="Matches held back by quiet hours")
    version: str = Field(default="0.1.0")


# ── Jobs ──────────────────────────────────────────────


class JobSuitabilityModel(BaseModel):
    """Target audience of a job."""

    men: bool = False
    women: bool = False
    general: bool = True
    min_age: int | None = Field(default=None, ge=0, le=120)


class JobCreatedRequest(BaseModel):
    """Payload of the job-creation hook."""

    job_id: str = Field(..., min_length=1, description="Job identifier")
    title: str = Field(..., min_length=1)
    area: str = Field(default="", description="City or region the job takes place in")
    poster_id: str = Field(..., min_length=1)
    payment_kind: str = Field(default="hourly", pattern="^(hourly|global)$")
    hourly_rate: float | None = Field(default=None, ge=0)
    global_amount: float | None = Field(default=None, ge=0)
    payment_method: str | None = None
    difficulty: str | None = None
    suitability: JobSuitabilityModel = Field(default_factory=JobSuitabilityModel)
    date_type: str = Field(
        default="flexible",
        pattern="^(today|comingWeek|flexible|specificDate)$",
    )
    specific_date: dt.date | None = None
    duration_hours: float | None = Field(default=None, ge=0)
    duration_flexible: bool = False
    people_needed: int | None = Field(default=None, ge=1)
    description: str = ""
    posted_at: dt.datetime | None = Field(
        default=None,
        description="Creation timestamp (defaults to receipt time)",
    )


class ScanResponse(BaseModel):
    """Outcome of scanning one job against active alerts."""

    job_id: str
    evaluated: int
    matched: int
    skipped: int
    errors: int
    latency_ms: float


class DeleteResponse(BaseModel):
    """Outcome of a delete or cancellation hook."""

    id: str
    found: bool


# ── Dispatch ──────────────────────────────────────────


class DispatchResponse(BaseModel):
    """Outcome counts of a forced dispatch."""

    releases: int
    deferred: int
    discarded: int
    errors: int
    latency_ms: float


class DispatchStatsResponse(BaseModel):
    """Admin dispatch statistics."""

    sent_today: int = Field(..., description="Successful sends since local midnight")
    sent_this_month: int = Field(
        ..., description="Successful sends since the first of the local month",
    )
    sent_total: int = Field(..., description="Successful sends overall")
    failed_today: int = Field(..., description="Failed sends since local midnight")
    pending_jobs: int = Field(..., description="Recent jobs not yet covered by every alert")
    pending_buckets: int = Field(..., description="Digest buckets waiting to flush")
    deferred_matches: int = Field(..., description="Matches held back by quiet hours")
    calls_today: int = Field(..., description="Phone calls placed since local midnight")
