"""
Email Notification Service

Sends notification emails over SMTP. The blocking smtplib session runs in a
worker thread so the event loop (and the scheduler on it) is never stalled.
Delivery is best-effort: failures are logged and reported as False.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any, Optional

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from clearstack.shared.core.config import get_settings

logger = structlog.get_logger()


class EmailService:
    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: Optional[str],
        smtp_password: Optional[str],
        from_email: str,
        timeout: float = 10.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.timeout = timeout

    async def send(self, to_email: str, subject: str, html: str) -> bool:
        if not to_email:
            logger.warning("email_skipped_no_recipient", subject=subject)
            return False

        try:
            await asyncio.to_thread(self._send_sync, [to_email], subject, html)
        except Exception as exc:
            logger.error("email_send_failed", subject=subject, error=str(exc))
            return False

        logger.info("email_sent", subject=subject)
        return True

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((smtplib.SMTPServerDisconnected, ConnectionError)),
        reraise=True,
    )
    def _send_sync(self, recipients: list[str], subject: str, html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
            server.starttls()
            if self.smtp_user:
                server.login(self.smtp_user, self.smtp_password or "")
            server.sendmail(self.from_email, recipients, msg.as_string())


def build_email_service() -> Optional[EmailService]:
    """EmailService from settings, or None when SMTP is not configured."""
    settings = get_settings()
    if not settings.SMTP_HOST:
        return None
    return EmailService(
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        from_email=settings.SMTP_FROM,
        timeout=settings.SMTP_TIMEOUT_SECONDS,
    )


def _layout(title: str, body: str) -> str:
    settings = get_settings()
    return (
        "<html><body style=\"font-family: Arial, sans-serif; color: #1f2933;\">"
        f"<h2>{escape(title)}</h2>{body}"
        f"<p><a href=\"{escape(settings.APP_BASE_URL)}\">Open ClearStack</a></p>"
        "</body></html>"
    )


def render_notification_email(
    notification_type: str, payload: dict[str, Any]
) -> tuple[str, str]:
    """Subject and HTML body for a notification."""
    if notification_type == "ALERT_CONTRACT":
        software = escape(str(payload.get("software_name", "")))
        days = payload.get("days_remaining")
        subject = f"Contract renewal: {payload.get('software_name')} expires in {days} days"
        body = (
            f"<p>The contract for <strong>{software}</strong> ends on "
            f"{escape(str(payload.get('end_date')))} ({days} days left).</p>"
            f"<p>Amount: {escape(str(payload.get('amount')))} "
            f"{escape(str(payload.get('currency', '')))}</p>"
        )
        return subject, _layout("Contract expiring soon", body)

    if notification_type == "PROJECT_TASK":
        title = escape(str(payload.get("task_title", "")))
        subject = f"Overdue task: {payload.get('task_title')}"
        body = (
            f"<p>The task <strong>{title}</strong> on project "
            f"{escape(str(payload.get('project_name', '')))} was due on "
            f"{escape(str(payload.get('due_date')))}.</p>"
        )
        return subject, _layout("Task overdue", body)

    if payload.get("kind") == "weekly_digest":
        stats = payload.get("stats", {})
        rows = "".join(
            f"<li>{escape(str(label))}: {escape(str(value))}</li>"
            for label, value in stats.items()
        )
        return "Your weekly ClearStack digest", _layout(
            "Weekly digest", f"<ul>{rows}</ul>"
        )

    return "ClearStack notification", _layout("Notification", "<p>You have a new notification.</p>")
