"""Stateless predicate deciding whether a job satisfies an alert.

Each dimension of an ``AlertPreference`` is optional; an unset dimension is
a wildcard, so an alert with nothing set matches every job. No I/O, no
state: scanning, scheduling and delivery live elsewhere.

Numeric and date dimensions arrive as the preference form submitted them
(``"50"``, ``50``, ``""``). All of them are parsed up front so a malformed
alert raises ``MalformedAlertError`` regardless of which job it meets.
"""

from dataclasses import dataclass
from datetime import date

from src.alerts.regions import cities_in_region, is_region
from src.alerts.schemas import AlertPreference, RangeValue
from src.jobs.schemas import Job


class MalformedAlertError(ValueError):
    """An alert dimension could not be parsed (e.g. a non-numeric range)."""

    def __init__(self, alert_id: str, field_name: str, value: object) -> None:
        self.alert_id = alert_id
        self.field_name = field_name
        self.value = value
        super().__init__(
            f"Alert {alert_id}: malformed {field_name} value {value!r}"
        )


@dataclass(frozen=True)
class _Range:
    low: float | None = None
    high: float | None = None

    @property
    def is_set(self) -> bool:
        return self.low is not None or self.high is not None

    def contains(self, value: float | None) -> bool:
        """Inclusive range check; an unknown value fails a set range."""
        if not self.is_set:
            return True
        if value is None:
            return False
        if self.low is not None and value < self.low:
            return False
        if self.high is not None and value > self.high:
            return False
        return True


def _is_unset(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_number(alert: AlertPreference, field_name: str, value: RangeValue) -> float | None:
    if _is_unset(value):
        return None
    if isinstance(value, bool):
        raise MalformedAlertError(alert.alert_id, field_name, value)
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise MalformedAlertError(alert.alert_id, field_name, value) from None


def _parse_range(alert: AlertPreference, low_field: str, high_field: str) -> _Range:
    return _Range(
        low=_parse_number(alert, low_field, getattr(alert, low_field)),
        high=_parse_number(alert, high_field, getattr(alert, high_field)),
    )


def _parse_date(alert: AlertPreference, field_name: str, value: str | date | None) -> date | None:
    if _is_unset(value):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise MalformedAlertError(alert.alert_id, field_name, value) from None


@dataclass(frozen=True)
class _ParsedAlert:
    duration: _Range
    hourly: _Range
    global_payment: _Range
    people: _Range
    age: _Range
    date_start: date | None
    date_end: date | None


def _parse(alert: AlertPreference) -> _ParsedAlert:
    return _ParsedAlert(
        duration=_parse_range(alert, "min_duration_hours", "max_duration_hours"),
        hourly=_parse_range(alert, "min_hourly_rate", "max_hourly_rate"),
        global_payment=_parse_range(alert, "min_global_payment", "max_global_payment"),
        people=_parse_range(alert, "min_people_needed", "max_people_needed"),
        age=_parse_range(alert, "min_age", "max_age"),
        date_start=_parse_date(alert, "specific_date_start", alert.specific_date_start),
        date_end=_parse_date(alert, "specific_date_end", alert.specific_date_end),
    )


def _match_location(job: Job, location: str | None) -> bool:
    if _is_unset(location):
        return True
    if is_region(location):
        return job.area in cities_in_region(location)
    return job.area == location


def _match_date(job: Job, alert: AlertPreference, parsed: _ParsedAlert) -> bool:
    if _is_unset(alert.date_type):
        return True
    if job.date_type != alert.date_type:
        return False
    if alert.date_type != "specificDate":
        return True
    if parsed.date_start is None and parsed.date_end is None:
        return True
    if job.specific_date is None:
        return False
    if parsed.date_start is not None and job.specific_date < parsed.date_start:
        return False
    if parsed.date_end is not None and job.specific_date > parsed.date_end:
        return False
    return True


def _match_duration(job: Job, flexible_filter: str | None, duration: _Range) -> bool:
    if flexible_filter == "yes":
        return job.duration_flexible
    if flexible_filter == "no":
        return not job.duration_flexible and duration.contains(job.duration_hours)
    # "any" or unset: the range constrains only fixed-duration jobs
    if job.duration_flexible:
        return True
    return duration.contains(job.duration_hours)


def _match_payment(job: Job, alert: AlertPreference, parsed: _ParsedAlert) -> bool:
    kind = alert.payment_kind
    if not _is_unset(kind) and kind != "any" and job.payment_kind != kind:
        return False

    rate_range = parsed.hourly if job.payment_kind == "hourly" else parsed.global_payment
    if not rate_range.contains(job.rate):
        return False

    if alert.payment_methods and job.payment_method not in alert.payment_methods:
        return False
    return True


def _match_suitability(job: Job, target: str | None, age: _Range) -> bool:
    if not _is_unset(target) and target != "any":
        suitability = job.suitability
        # General jobs are open to every target
        if not suitability.general:
            if target == "men" and not suitability.men:
                return False
            if target == "women" and not suitability.women:
                return False
            if target == "general":
                return False

    job_min_age = job.suitability.min_age
    if job_min_age is None or age.high is None:
        return True
    # Job accepts ages [job_min_age, inf); it must reach into the alert's range
    return job_min_age <= age.high


def matches(job: Job, alert: AlertPreference) -> bool:
    """Decide whether a job satisfies every dimension an alert has set.

    Args:
        job: The posted job.
        alert: The alert preference to evaluate.

    Returns:
        True if every set dimension is satisfied.

    Raises:
        MalformedAlertError: If a numeric or date dimension cannot be parsed.
    """
    parsed = _parse(alert)

    if not _match_location(job, alert.location):
        return False
    if not _is_unset(alert.difficulty) and job.difficulty != alert.difficulty:
        return False
    if not _match_date(job, alert, parsed):
        return False
    if not _match_duration(job, alert.filter_duration_flexible, parsed.duration):
        return False
    if not _match_payment(job, alert, parsed):
        return False
    if not parsed.people.contains(job.people_needed):
        return False
    return _match_suitability(job, alert.suitability_for, parsed.age)


def has_dimensions(alert: AlertPreference) -> bool:
    """Whether any filter dimension is set (False for the "everything" alert)."""
    for key, value in alert.filters_dict().items():
        if key in ("payment_kind", "suitability_for", "filter_duration_flexible"):
            if not _is_unset(value) and value != "any":
                return True
        elif key == "payment_methods":
            if value:
                return True
        elif not _is_unset(value):
            return True
    return False
