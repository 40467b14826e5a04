"""Alert engine configuration.

``AlertConfig`` controls digest scheduling and the minute ticker;
``DispatchSettings`` is the admin configuration surface (phone and email
service toggles, send mode, daily call cap, global phone quiet hours).
Both can be overridden via ``ALERTS_*`` / ``DISPATCH_*`` environment variables.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlertConfig(BaseSettings):
    """Configuration for alert scanning and digest scheduling."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Digest release time (local) at the window boundary
    digest_hour: int = Field(
        default=20,
        ge=0,
        le=23,
        description="Local hour at which daily/weekly digests are released",
    )
    digest_minute: int = Field(
        default=0,
        ge=0,
        le=59,
        description="Local minute at which daily/weekly digests are released",
    )
    weekly_digest_weekday: int = Field(
        default=0,
        ge=0,
        le=6,
        description="Weekday (0 = Sunday) on which weekly digests are released",
    )

    # Ticker
    sweep_interval_minutes: int = Field(
        default=15,
        ge=1,
        description="Minutes between catch-up sweeps run by the ticker",
    )
    sweep_lookback_hours: int = Field(
        default=24,
        ge=1,
        le=720,
        description="How far back the catch-up sweep and pending count look",
    )
    scan_concurrency: int = Field(
        default=50,
        ge=1,
        description="Maximum alerts evaluated concurrently per job",
    )

    # Shared dispatch state
    bucket_key_prefix: str = Field(
        default="alerts:bucket",
        description="Redis key prefix for digest buckets",
    )
    deferred_key: str = Field(
        default="alerts:deferred",
        description="Redis key holding deferred instant matches",
    )
    volume_key_prefix: str = Field(
        default="volume",
        description="Redis key prefix for daily volume counters",
    )
    volume_key_ttl_hours: int = Field(
        default=48,
        ge=25,
        description="TTL for daily volume counters (day-key rollover)",
    )

    site_base_url: str = Field(
        default="https://example.org",
        description="Base URL used for job links in notifications",
    )


class DispatchSettings(BaseSettings):
    """Admin-controlled dispatch settings (read-only to the engine)."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        extra="ignore",
    )

    is_phone_service_active: bool = Field(
        default=True,
        description="When false the phone channel is dropped from every fan-out",
    )
    is_email_service_active: bool = Field(
        default=True,
        description="When false the email channel is dropped from every fan-out",
    )
    check_frequency_minutes: int = Field(
        default=1,
        ge=1,
        le=1440,
        description="Ticker period in minutes",
    )
    send_mode: Literal["immediate", "batch"] = Field(
        default="immediate",
        description="immediate releases instant matches on scan; batch waits for the tick",
    )
    max_calls_per_day: int = Field(
        default=0,
        ge=0,
        description="Daily phone-call cap across all alerts (0 = unlimited)",
    )
    quiet_hours_start: int = Field(
        default=22,
        ge=0,
        le=23,
        description="Local hour at which phone quiet hours begin",
    )
    quiet_hours_end: int = Field(
        default=7,
        ge=0,
        le=23,
        description="Local hour at which phone quiet hours end",
    )
    require_payment_for_posters: bool = Field(default=False)
    require_payment_for_viewers: bool = Field(default=False)
