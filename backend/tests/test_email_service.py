"""Tests for EmailService delivery of pipeline reports."""

from unittest.mock import AsyncMock, patch

import pytest

from app.services.email_service import EmailService, _render_report_html, _render_report_text
from app.services.notifications import (
    ConsumeReport,
    FailureReport,
    LogNotificationSink,
    SubmissionReport,
)


def _configured() -> EmailService:
    return EmailService(
        from_email="digest@example.com",
        app_password="app-pass",
        notify_email="ops@example.com",
    )


def _consume_report(error_count: int = 1) -> ConsumeReport:
    errors = [
        {"customId": f"u{i}_2024_10", "error": "Rate limit <reached>"} for i in range(error_count)
    ]
    return ConsumeReport(
        batch_id="batch_1",
        week=10,
        year=2024,
        success_count=4,
        error_count=error_count,
        errors=errors,
    )


class TestConfiguration:
    def test_configured_requires_sender_password_and_recipient(self):
        assert _configured().configured
        assert not EmailService(from_email="a@example.com", app_password="x").configured

    @pytest.mark.asyncio
    async def test_unconfigured_service_returns_false_without_sending(self):
        service = EmailService()
        with patch("aiosmtplib.send", new_callable=AsyncMock) as send:
            assert await service.batch_completed(_consume_report()) is False
        send.assert_not_called()


class TestDelivery:
    @pytest.mark.asyncio
    async def test_batch_completed_sends_multipart_message(self):
        with patch("aiosmtplib.send", new_callable=AsyncMock) as send:
            assert await _configured().batch_completed(_consume_report()) is True

        message = send.call_args.args[0]
        kwargs = send.call_args.kwargs
        assert message["To"] == "ops@example.com"
        assert message["From"] == "digest@example.com"
        assert "week 10/2024" in message["Subject"]
        assert "4 ok, 1 failed" in message["Subject"]
        assert kwargs["hostname"] == "smtp.gmail.com"
        assert kwargs["port"] == 587
        assert kwargs["start_tls"] is True

    @pytest.mark.asyncio
    async def test_smtp_failure_returns_false(self):
        with patch("aiosmtplib.send", new_callable=AsyncMock, side_effect=OSError("refused")):
            assert await _configured().batch_failed(
                FailureReport("batch_1", 10, 2024, "failed", "Provider batch expired")
            ) is False

    @pytest.mark.asyncio
    async def test_pipeline_error_subject_names_context(self):
        with patch("aiosmtplib.send", new_callable=AsyncMock) as send:
            await _configured().pipeline_error("poll cycle", RuntimeError("db down"))
        assert "poll cycle" in send.call_args.args[0]["Subject"]


class TestRendering:
    def test_html_escapes_values(self):
        body = _render_report_html("Batch consumed", [("Batch", "<b>")], _consume_report().errors)
        assert "&lt;b&gt;" in body
        assert "Rate limit &lt;reached&gt;" in body

    def test_long_error_lists_are_truncated(self):
        report = _consume_report(error_count=25)
        text = _render_report_text("Batch consumed", [], report.errors)
        assert "u19_2024_10" in text
        assert "u20_2024_10" not in text
        assert "and 5 more" in text


class TestLogNotificationSink:
    @pytest.mark.asyncio
    async def test_every_report_is_accepted(self):
        sink = LogNotificationSink()
        assert await sink.batch_submitted(SubmissionReport("batch_1", 10, 2024, 3, 2, ["u3"]))
        assert await sink.batch_completed(_consume_report())
        assert await sink.batch_failed(FailureReport("batch_1", 10, 2024, "failed", "expired"))
        assert await sink.pipeline_error("submission", RuntimeError("x"))
