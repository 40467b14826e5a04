"""RTL HTML rendering of the job-alert email digest.

``render_job_alert_digest`` is a pure function of its payload
({recipient_name, alert_name, jobs: [{id, title, location, payment_label,
posted_at_label}]}). Every interpolated value is HTML-escaped and jobs
are listed in the order given.
"""

from datetime import datetime, timezone
from html import escape
from typing import Any

DEFAULT_BASE_URL = "https://example.org"

_JOB_ROW = """
        <tr>
            <td style="padding: 16px; border-bottom: 1px solid #e5e7eb;">
                <a href="{link}" style="color: #2563eb; text-decoration: none; font-weight: bold; font-size: 16px;">{title}</a>
                <div style="margin-top: 8px; color: #6b7280; font-size: 14px;">
                    <span>📍 {location}</span>
                    <span style="margin-right: 16px;">💰 {payment}</span>
                </div>
                <div style="margin-top: 4px; color: #9ca3af; font-size: 12px;">פורסם: {posted_at}</div>
            </td>
        </tr>"""

_DOCUMENT = """<!DOCTYPE html>
<html lang="he" dir="rtl">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>משרות חדשות מתאימות להתראה שלך</title>
</head>
<body style="margin: 0; padding: 0; font-family: Tahoma, Arial, sans-serif; background-color: #f3f4f6; direction: rtl;">
    <table role="presentation" style="width: 100%; border-collapse: collapse;">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table style="max-width: 600px; width: 100%; background-color: #ffffff; border-radius: 16px;">
                    <tr>
                        <td style="padding: 32px 24px 16px;">
                            <p style="margin: 0; font-size: 18px; color: #1f2937;">שלום <strong>{recipient}</strong>,</p>
                            <p style="margin: 12px 0 0; font-size: 16px; color: #4b5563; line-height: 1.6;">
                                מצאנו <strong style="color: #2563eb;">{count_label}</strong>
                                שמתאימות להתראה "<strong>{alert_name}</strong>" שלך!
                            </p>
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 0 24px;">
                            <table style="width: 100%; border: 1px solid #e5e7eb; border-collapse: collapse;">{rows}
                            </table>
                        </td>
                    </tr>
                    <tr>
                        <td style="padding: 32px 24px; text-align: center;">
                            <a href="{jobs_link}" style="display: inline-block; background: #2563eb; color: #ffffff; text-decoration: none; padding: 14px 32px; border-radius: 8px; font-weight: bold;">צפה בכל המשרות</a>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: #f9fafb; padding: 24px; text-align: center; border-top: 1px solid #e5e7eb;">
                            <p style="margin: 0 0 8px; font-size: 14px; color: #6b7280;">קיבלת מייל זה כי הפעלת התראות במייל.</p>
                            <a href="{settings_link}" style="color: #2563eb; font-size: 14px;">לניהול התראות לחץ כאן</a>
                            <p style="margin: 16px 0 0; font-size: 12px; color: #9ca3af;">© {year}</p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>
"""


def _count_label(count: int) -> str:
    return "משרה חדשה אחת" if count == 1 else f"{count} משרות חדשות"


def digest_subject(job_count: int) -> str:
    """Email subject line for a digest of ``job_count`` jobs."""
    if job_count == 1:
        return "🔔 משרה חדשה מתאימה להתראה שלך!"
    return f"🔔 {job_count} משרות חדשות מתאימות להתראה שלך!"


def render_job_alert_digest(
    payload: dict[str, Any],
    base_url: str = DEFAULT_BASE_URL,
    year: int | None = None,
) -> str:
    """Render the digest payload into an RTL HTML document.

    Args:
        payload: Digest payload (see module docstring).
        base_url: Site root used for job and settings links.
        year: Copyright year (defaults to the current UTC year).

    Returns:
        Complete HTML markup.
    """
    base = base_url.rstrip("/")
    jobs = payload.get("jobs") or []

    rows = "".join(
        _JOB_ROW.format(
            link=escape(f"{base}/#/job/{job['id']}"),
            title=escape(str(job.get("title", ""))),
            location=escape(str(job.get("location", ""))),
            payment=escape(str(job.get("payment_label", ""))),
            posted_at=escape(str(job.get("posted_at_label", ""))),
        )
        for job in jobs
    )

    return _DOCUMENT.format(
        recipient=escape(payload.get("recipient_name") or "משתמש יקר"),
        count_label=_count_label(len(jobs)),
        alert_name=escape(str(payload.get("alert_name", ""))),
        rows=rows,
        jobs_link=escape(f"{base}/#/jobs"),
        settings_link=escape(f"{base}/#/notifications"),
        year=year or datetime.now(timezone.utc).year,
    )
