"""Tests for digest email rendering and the Resend mailer."""
import logging
from datetime import datetime

import pytest
import resend

from affinity.core.config import Settings
from affinity.models import EmailFrequency
from affinity.services.mailer import ResendMailer
from affinity.services.preferences import Recipient, parse_notifications
from affinity.utils.email import render_email

RECIPIENT = Recipient(
    user_id="u1",
    name="Ana",
    email="ana@example.com",
    cadence=EmailFrequency.DAILY,
    notifications=parse_notifications(None),
)

JOB_ITEMS = [
    {
        "job_id": "j1",
        "title": "Agronomist <Senior>",
        "company": "Farms & Co",
        "location": "Maputo, MZ",
        "description": "Grow things",
        "author": "Employer",
        "created_at": datetime(2024, 1, 1),
        "link": "https://54links.com/jobs/j1",
        "match_percentage": 87,
    }
]


def test_render_email_subjects():
    assert render_email("connection-update", "Ana", "weekly", [], "https://x")[0] == "Your weekly connection updates"
    assert render_email("connection-recommendation", "Ana", "daily", [], "https://x")[0] == "People you may want to connect with"
    assert render_email("job-opportunity", "Ana", "daily", [], "https://x")[0] == "Job opportunities for you"


def test_render_email_escapes_content():
    _, html = render_email("job-opportunity", "Ana", "daily", JOB_ITEMS, "https://54links.com")

    assert "Agronomist &lt;Senior&gt;" in html
    assert "Farms &amp; Co" in html
    assert "87% match" in html
    assert "https://54links.com/jobs/j1" in html


def test_render_email_unknown_template():
    with pytest.raises(KeyError):
        render_email("newsletter", "Ana", "daily", [], "https://x")


def test_mailer_logs_instead_of_sending_without_api_key(monkeypatch, caplog):
    def fail_send(params):
        raise AssertionError("should not send")

    monkeypatch.setattr(resend.Emails, "send", fail_send)
    mailer = ResendMailer(Settings(RESEND_API_KEY=None))

    with caplog.at_level(logging.INFO):
        assert mailer.send(RECIPIENT, "jobOpportunities", JOB_ITEMS, "job-opportunity", "daily") is True

    assert "Would send 'Job opportunities for you' to: ana@example.com" in caplog.text


def test_mailer_sends_through_resend(monkeypatch):
    sent = []

    def fake_send(params):
        sent.append(params)
        return {"id": "email_123"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    mailer = ResendMailer(Settings(RESEND_API_KEY="re_test", EMAIL_FROM="alerts@example.com"))

    assert mailer.send(RECIPIENT, "jobOpportunities", JOB_ITEMS, "job-opportunity", "daily") is True

    assert sent[0]["to"] == ["ana@example.com"]
    assert sent[0]["from"] == "54Links Alert <alerts@example.com>"
    assert sent[0]["subject"] == "Job opportunities for you"


def test_mailer_reports_transport_errors(monkeypatch):
    def broken_send(params):
        raise ConnectionError("resend unavailable")

    monkeypatch.setattr(resend.Emails, "send", broken_send)
    mailer = ResendMailer(Settings(RESEND_API_KEY="re_test"))

    assert mailer.send(RECIPIENT, "jobOpportunities", JOB_ITEMS, "job-opportunity", "daily") is False
