"""Text formatting shared by the channel senders.

Pure helpers: payment and posting-time labels, job links, the digest
payload consumed by the email template and the short WhatsApp digest.
"""

from datetime import datetime
from typing import Any

from src.alerts.quiet_hours import to_local
from src.alerts.regions import location_label
from src.jobs.schemas import Job

HEBREW_MONTHS = (
    "בינואר", "בפברואר", "במרץ", "באפריל", "במאי", "ביוני",
    "ביולי", "באוגוסט", "בספטמבר", "באוקטובר", "בנובמבר", "בדצמבר",
)

NOT_SPECIFIED = "לא צוין"


def _amount(value: float) -> str:
    return f"{value:g}" if float(value).is_integer() else f"{value:.2f}"


def format_payment_label(job: Job) -> str:
    """``₪60/שעה`` for hourly jobs, ``₪500 (גלובלי)`` for fixed payment."""
    if job.payment_kind == "hourly" and job.hourly_rate:
        return f"₪{_amount(job.hourly_rate)}/שעה"
    if job.payment_kind == "global" and job.global_amount:
        return f"₪{_amount(job.global_amount)} (גלובלי)"
    return NOT_SPECIFIED


def format_posted_at_label(posted_at: datetime, tz_name: str = "Asia/Jerusalem") -> str:
    """Local day, Hebrew month and time, e.g. ``19 באוקטובר, 14:30``."""
    local = to_local(posted_at, tz_name)
    return f"{local.day} {HEBREW_MONTHS[local.month - 1]}, {local:%H:%M}"


def job_link(base_url: str, job_id: str) -> str:
    return f"{base_url.rstrip('/')}/#/job/{job_id}"


def build_digest_payload(
    recipient_name: str | None,
    alert_name: str,
    jobs: list[Job],
    tz_name: str = "Asia/Jerusalem",
) -> dict[str, Any]:
    """Payload for ``render_job_alert_digest``; keeps the given job order."""
    return {
        "recipient_name": recipient_name or "",
        "alert_name": alert_name,
        "jobs": [
            {
                "id": job.job_id,
                "title": job.title,
                "location": location_label(job.area),
                "payment_label": format_payment_label(job),
                "posted_at_label": format_posted_at_label(job.posted_at, tz_name),
            }
            for job in jobs
        ],
    }


def format_whatsapp_text(
    recipient_name: str | None,
    alert_name: str,
    jobs: list[Job],
    base_url: str,
) -> str:
    """Short plain-text digest, one line per job."""
    greeting = f"שלום {recipient_name}," if recipient_name else "שלום,"
    if len(jobs) == 1:
        header = f'משרה חדשה בהתראת "{alert_name}":'
    else:
        header = f'{len(jobs)} משרות חדשות בהתראת "{alert_name}":'

    lines = [greeting, header]
    for job in jobs:
        lines.append(
            f"• {job.title} | {location_label(job.area)} | "
            f"{format_payment_label(job)}\n  {job_link(base_url, job.job_id)}"
        )
    return "\n".join(lines)
