"""Tests for notification text formatting and the email digest template."""

from datetime import datetime, timezone

from src.delivery.formatting import (
    build_digest_payload,
    format_payment_label,
    format_posted_at_label,
    format_whatsapp_text,
    job_link,
)
from src.delivery.templates import digest_subject, render_job_alert_digest
from src.jobs.schemas import Job


def _make_job(**kwargs) -> Job:
    defaults = {
        "job_id": "job_1",
        "title": "הובלה",
        "area": "ירושלים",
        "poster_id": "poster_1",
        "posted_at": datetime(2026, 10, 19, 11, 30, tzinfo=timezone.utc),
    }
    defaults.update(kwargs)
    return Job(**defaults)


class TestLabels:
    def test_hourly(self):
        assert format_payment_label(_make_job(hourly_rate=60.0)) == "₪60/שעה"

    def test_hourly_fraction(self):
        assert format_payment_label(_make_job(hourly_rate=42.5)) == "₪42.50/שעה"

    def test_global(self):
        job = _make_job(payment_kind="global", global_amount=500)
        assert format_payment_label(job) == "₪500 (גלובלי)"

    def test_unspecified(self):
        assert format_payment_label(_make_job()) == "לא צוין"

    def test_posted_at_is_local(self):
        # 11:30 UTC is 14:30 in Israel
        label = format_posted_at_label(datetime(2026, 10, 19, 11, 30, tzinfo=timezone.utc))
        assert label == "19 באוקטובר, 14:30"

    def test_job_link_strips_slash(self):
        assert job_link("https://jobs.example.org/", "j1") == "https://jobs.example.org/#/job/j1"


class TestDigestPayload:
    def test_keeps_order_and_labels(self):
        jobs = [_make_job(job_id="a", hourly_rate=50.0), _make_job(job_id="b", area="region_north")]
        payload = build_digest_payload("דוד", "הובלות", jobs)

        assert payload["recipient_name"] == "דוד"
        assert [j["id"] for j in payload["jobs"]] == ["a", "b"]
        assert payload["jobs"][0]["payment_label"] == "₪50/שעה"
        assert payload["jobs"][1]["location"] == "אזור הצפון"

    def test_missing_name(self):
        assert build_digest_payload(None, "x", [])["recipient_name"] == ""


class TestWhatsAppText:
    def test_single_job(self):
        text = format_whatsapp_text("דוד", "הובלות", [_make_job(hourly_rate=60.0)], "https://s")
        lines = text.split("\n")
        assert lines[0] == "שלום דוד,"
        assert lines[1] == 'משרה חדשה בהתראת "הובלות":'
        assert "https://s/#/job/job_1" in text

    def test_many_jobs(self):
        jobs = [_make_job(job_id=f"j{i}") for i in range(3)]
        text = format_whatsapp_text(None, "הובלות", jobs, "https://s")
        assert text.startswith("שלום,\n3 משרות חדשות")


# ── Email template ──────────────────────────────────────


class TestRenderDigest:
    def _payload(self, **kwargs):
        payload = {
            "recipient_name": "דוד",
            "alert_name": "הובלות",
            "jobs": [
                {
                    "id": "j1",
                    "title": "ראשונה",
                    "location": "ירושלים",
                    "payment_label": "₪60/שעה",
                    "posted_at_label": "19 באוקטובר, 14:30",
                },
                {
                    "id": "j2",
                    "title": "שנייה",
                    "location": "בני ברק",
                    "payment_label": "לא צוין",
                    "posted_at_label": "19 באוקטובר, 15:00",
                },
            ],
        }
        payload.update(kwargs)
        return payload

    def test_rtl_document(self):
        html = render_job_alert_digest(self._payload(), base_url="https://s/", year=2026)
        assert '<html lang="he" dir="rtl">' in html
        assert "2 משרות חדשות" in html
        assert "https://s/#/job/j1" in html
        assert "https://s/#/notifications" in html
        assert "© 2026" in html

    def test_jobs_in_given_order(self):
        html = render_job_alert_digest(self._payload())
        assert html.index("ראשונה") < html.index("שנייה")

    def test_values_are_escaped(self):
        payload = self._payload(alert_name="<script>x</script>")
        payload["jobs"][0]["title"] = 'a & "b"'
        html = render_job_alert_digest(payload)

        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "a &amp; &quot;b&quot;" in html

    def test_default_recipient(self):
        html = render_job_alert_digest(self._payload(recipient_name=""))
        assert "משתמש יקר" in html

    def test_single_job_label(self):
        payload = self._payload()
        payload["jobs"] = payload["jobs"][:1]
        assert "משרה חדשה אחת" in render_job_alert_digest(payload)

    def test_subject(self):
        assert digest_subject(1) == "🔔 משרה חדשה מתאימה להתראה שלך!"
        assert digest_subject(4) == "🔔 4 משרות חדשות מתאימות להתראה שלך!"
