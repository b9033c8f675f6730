"""Email notification service - mails pipeline reports to the operator.

Strategy:
    Primary channel is Google SMTP (smtp.gmail.com:587 with STARTTLS).
    The sender account is configured via SMTP_FROM_EMAIL + SMTP_APP_PASSWORD
    (a Gmail App Password, not the account password) and reports go to
    NOTIFY_EMAIL.

    If SMTP is not configured the service degrades gracefully: it logs the
    report at WARNING level and returns False without raising, so a missing
    mailbox never breaks a poll cycle.

Configuration (add to .env):
    SMTP_FROM_EMAIL=youraccount@gmail.com
    SMTP_APP_PASSWORD=xxxx-xxxx-xxxx-xxxx
    NOTIFY_EMAIL=ops@example.com
"""

import html
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.services.notifications import ConsumeReport, FailureReport, SubmissionReport

logger = logging.getLogger(__name__)

# Errors listed in a report body; the rest are summarised as a count
_MAX_LISTED_ERRORS = 20

# Module-level singleton
_email_service: "EmailService | None" = None


class EmailService:
    """NotificationSink delivering reports over SMTP (Gmail STARTTLS)."""

    def __init__(
        self,
        from_email: str = "",
        app_password: str = "",
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        notify_email: str = "",
    ) -> None:
        self._from_email = from_email
        self._app_password = app_password
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._notify_email = notify_email
        self.configured = bool(from_email and app_password and notify_email)

        if not self.configured:
            logger.info(
                "Email service: SMTP credentials or recipient not configured, "
                "reports will be logged only"
            )

    # ------------------------------------------------------------------
    # NotificationSink
    # ------------------------------------------------------------------

    async def batch_submitted(self, report: SubmissionReport) -> bool:
        subject = f"Weekly summaries submitted: week {report.week}/{report.year}"
        rows = [
            ("Batch", report.batch_id or "-"),
            ("Eligible users", str(report.total_users)),
            ("Requests submitted", str(report.requests_submitted)),
            ("Skipped users", str(len(report.skipped_users))),
        ]
        return await self._send_report(subject, "Batch submitted", rows)

    async def batch_completed(self, report: ConsumeReport) -> bool:
        subject = (
            f"Weekly summaries ready: week {report.week}/{report.year} "
            f"({report.success_count} ok, {report.error_count} failed)"
        )
        rows = [
            ("Batch", report.batch_id),
            ("Summaries written", str(report.success_count)),
            ("Errors", str(report.error_count)),
        ]
        return await self._send_report(subject, "Batch consumed", rows, report.errors)

    async def batch_failed(self, report: FailureReport) -> bool:
        subject = f"Weekly summary batch {report.status}: week {report.week}/{report.year}"
        rows = [
            ("Batch", report.batch_id),
            ("Status", report.status),
            ("Reason", report.reason),
        ]
        return await self._send_report(subject, "Batch failed", rows)

    async def pipeline_error(self, context: str, error: BaseException) -> bool:
        subject = f"Weekly summary pipeline error during {context}"
        rows = [("Context", context), ("Error", f"{type(error).__name__}: {error}")]
        return await self._send_report(subject, "Pipeline error", rows)

    # ------------------------------------------------------------------
    # Internal send helpers
    # ------------------------------------------------------------------

    async def _send_report(
        self,
        subject: str,
        heading: str,
        rows: list[tuple[str, str]],
        errors: list[dict[str, str]] | None = None,
    ) -> bool:
        return await self._send(
            to_email=self._notify_email,
            subject=subject,
            html_body=_render_report_html(heading, rows, errors or []),
            text_body=_render_report_text(heading, rows, errors or []),
        )

    async def _send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        """Build and send a MIME multipart email via aiosmtplib.

        Returns True on success, False on failure (never raises).
        """
        if not self.configured:
            logger.warning(
                "EMAIL (no SMTP configured) → %s | Subject: %s", to_email or "-", subject
            )
            return False

        try:
            import aiosmtplib

            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = self._from_email
            msg["To"] = to_email

            msg.attach(MIMEText(text_body, "plain", "utf-8"))
            msg.attach(MIMEText(html_body, "html", "utf-8"))

            await aiosmtplib.send(
                msg,
                hostname=self._smtp_host,
                port=self._smtp_port,
                username=self._from_email,
                password=self._app_password,
                start_tls=True,
            )

            logger.info("Email sent → %s | Subject: %s", to_email, subject)
            return True

        except Exception as exc:
            logger.error(
                "Failed to send email to %s: %s", to_email, exc, exc_info=True
            )
            return False


# ---------------------------------------------------------------------------
# Email template renderers
# ---------------------------------------------------------------------------


def _render_report_html(
    heading: str,
    rows: list[tuple[str, str]],
    errors: list[dict[str, str]],
) -> str:
    """Render the HTML body for a pipeline report."""
    table = "\n".join(
        f"    <tr><td style=\"padding:4px 12px 4px 0; color:#666;\">{html.escape(label)}</td>"
        f"<td><strong>{html.escape(value)}</strong></td></tr>"
        for label, value in rows
    )
    error_items = "\n".join(
        f"    <li><code>{html.escape(item.get('customId', ''))}</code>: "
        f"{html.escape(item.get('error', ''))}</li>"
        for item in errors[:_MAX_LISTED_ERRORS]
    )
    more = len(errors) - _MAX_LISTED_ERRORS
    error_block = ""
    if errors:
        error_block = f"""
  <h3 style="color: #c0392b;">Item errors</h3>
  <ul style="font-size: 0.9em;">
{error_items}
  </ul>"""
        if more > 0:
            error_block += f"\n  <p style=\"color:#666;\">… and {more} more</p>"

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: sans-serif; color: #333; max-width: 600px; margin: auto; padding: 24px;">
  <h2 style="color: #2d6a4f;">{html.escape(heading)}</h2>
  <table>
{table}
  </table>{error_block}
  <hr style="border: none; border-top: 1px solid #eee; margin: 32px 0;">
  <p style="color:#999; font-size:0.8em;">Weekly Digest</p>
</body>
</html>"""


def _render_report_text(
    heading: str,
    rows: list[tuple[str, str]],
    errors: list[dict[str, str]],
) -> str:
    """Render the plain-text body for a pipeline report."""
    lines = [heading, ""]
    lines.extend(f"{label}: {value}" for label, value in rows)
    if errors:
        lines.append("")
        lines.append("Item errors:")
        lines.extend(
            f"  - {item.get('customId', '')}: {item.get('error', '')}"
            for item in errors[:_MAX_LISTED_ERRORS]
        )
        if len(errors) > _MAX_LISTED_ERRORS:
            lines.append(f"  ... and {len(errors) - _MAX_LISTED_ERRORS} more")
    lines.append("")
    lines.append("-- Weekly Digest")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Singleton factory
# ---------------------------------------------------------------------------


def get_email_service() -> EmailService:
    """Return the module-level EmailService singleton.

    Reads SMTP configuration from the app settings on first call.
    """
    global _email_service
    if _email_service is None:
        from app.config import settings

        _email_service = EmailService(
            from_email=settings.smtp_from_email,
            app_password=settings.smtp_app_password,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            notify_email=settings.notify_email,
        )
    return _email_service
