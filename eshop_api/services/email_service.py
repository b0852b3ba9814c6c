"""Service for sending emails."""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

from ..core.errors import EmailDeliveryError

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Notification collaborator used by the verification-code workflow."""

    async def send(self, to: str, subject: str, html: str) -> None:
        ...


class EmailService:
    """Service for sending emails via SMTP."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_username: Optional[str] = None,
        smtp_password: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: str = "E-shop",
    ):
        self.smtp_host = smtp_host or ""
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username or ""
        self.smtp_password = smtp_password or ""
        self.from_email = from_email or ""
        self.from_name = from_name
        self.enabled = bool(self.smtp_host and self.smtp_username and self.from_email)

    async def send(self, to: str, subject: str, html: str) -> None:
        """
        Send an HTML email.

        Args:
            to: Recipient email
            subject: Email subject
            html: HTML body

        Raises:
            EmailDeliveryError: If the SMTP transport rejected the message
        """
        if not self.enabled:
            # Development mode: no transport configured, surface the body in the logs
            logger.warning("SMTP not configured. Email to %s (%s):\n%s", to, subject, html)
            return
        await asyncio.to_thread(self._send_email, to, subject, html)

    def _send_email(self, to_email: str, subject: str, html_body: str) -> None:
        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            msg.attach(MIMEText(html_body, "html", "utf-8"))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to_email, exc)
            raise EmailDeliveryError(str(exc)) from exc
        logger.info("Email '%s' sent to %s", subject, to_email)
