"""Quiet-hours gate for alert delivery.

Pure functions over local time. An alert's do-not-disturb window and its
notification days decide whether delivery may happen now; the same
``in_window`` check serves the global phone quiet hours. A closed gate
never drops a match, callers defer it to ``next_allowed_time``.

Weekday indices follow the product convention: 0 = Sunday ... 6 = Saturday.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from src.alerts.schemas import AlertPreference

logger = logging.getLogger(__name__)


class QuietHoursFormatError(ValueError):
    """A do-not-disturb boundary is not a valid ``HH:MM`` string."""


def parse_hhmm(value: str) -> time:
    """Parse ``"HH:MM"`` into a time.

    Raises:
        QuietHoursFormatError: If the value is not a valid time of day.
    """
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise QuietHoursFormatError(f"Invalid time of day {value!r}") from e


def to_local(moment: datetime, tz_name: str) -> datetime:
    """Convert an aware (or naive UTC) instant to local time."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name))


def day_key(moment: datetime, tz_name: str) -> str:
    """Local calendar day as ``YYYY-MM-DD``."""
    return to_local(moment, tz_name).date().isoformat()


def weekday_index(moment: datetime) -> int:
    """Weekday with Sunday as 0."""
    return (moment.weekday() + 1) % 7


def next_hour_boundary(now_local: datetime, hour: int) -> datetime:
    """Next local instant (strictly after now) at ``hour``:00."""
    candidate = now_local.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now_local:
        candidate += timedelta(days=1)
    return candidate


def in_window(now_local: datetime | time, start: time, end: time) -> bool:
    """Whether a local time falls inside ``[start, end)``.

    A window with ``start > end`` wraps midnight; ``start == end`` is empty.
    """
    current = now_local.time() if isinstance(now_local, datetime) else now_local
    current = current.replace(second=0, microsecond=0, tzinfo=None)
    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end


def _window(alert: AlertPreference) -> tuple[time, time] | None:
    dnd = alert.do_not_disturb
    if dnd is None or not dnd.start or not dnd.end:
        return None
    try:
        return parse_hhmm(dnd.start), parse_hhmm(dnd.end)
    except QuietHoursFormatError as e:
        logger.warning(
            "Ignoring quiet hours for alert %s: %s", alert.alert_id, e,
        )
        return None


def _day_allowed(alert: AlertPreference, now_local: datetime) -> bool:
    if not alert.notification_days:
        return True
    return weekday_index(now_local) in alert.notification_days


def is_allowed_now(alert: AlertPreference, now_local: datetime) -> bool:
    """Decide whether an alert may be delivered at a local instant.

    Args:
        alert: Alert carrying the do-not-disturb window and notification days.
        now_local: Current time in the alert's local timezone.

    Returns:
        False inside the window (or on an excluded day), True otherwise.
        An unparseable window is treated as absent.
    """
    if not _day_allowed(alert, now_local):
        return False
    window = _window(alert)
    if window is None:
        return True
    return not in_window(now_local, *window)


def next_allowed_time(alert: AlertPreference, now_local: datetime) -> datetime | None:
    """Earliest local instant, at or after ``now_local``, at which the gate is open.

    The gate can only open at a day start or at the end of the window, so
    only those boundaries over the coming week are candidates.

    Returns:
        The instant, or None if the gate never opens (e.g. no valid day).
    """
    now_local = now_local.replace(second=0, microsecond=0)
    if is_allowed_now(alert, now_local):
        return now_local

    window = _window(alert)
    candidates: list[datetime] = []
    for offset in range(8):
        day = now_local + timedelta(days=offset)
        candidates.append(day.replace(hour=0, minute=0))
        if window is not None:
            end = window[1]
            candidates.append(day.replace(hour=end.hour, minute=end.minute))

    for candidate in sorted(c for c in candidates if c > now_local):
        if is_allowed_now(alert, candidate):
            return candidate
    return None
