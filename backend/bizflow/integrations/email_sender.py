"""
Outgoing email for workflow email steps.
Providers: 'log' (development, only logs), 'resend' (Resend API), 'smtp' (smtplib).
"""
import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

import resend

from bizflow.core.config import Settings, get_settings
from bizflow.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)


class EmailDeliveryError(Exception):
    """Email could not be delivered by the configured provider"""


class EmailSender:
    """Sends email through the configured provider"""

    PROVIDERS = ("log", "resend", "smtp")

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.provider = self.settings.email_provider
        if self.provider not in self.PROVIDERS:
            raise ValueError(f"Unknown email provider: {self.provider}")

    async def send(
        self,
        to: Union[str, List[str]],
        subject: str,
        body: str,
        template: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an email.

        Returns:
            {"provider": ..., "messageId": ...}

        Raises:
            EmailDeliveryError: if the provider rejects the message
        """
        recipients = [to] if isinstance(to, str) else list(to)

        if self.provider == "log":
            message_id = f"log-{uuid4().hex[:12]}"
            logger.info(
                f"Email (log provider) to {', '.join(recipients)}: {subject}",
                extra={"email_template": template, "message_id": message_id},
            )
            return {"provider": "log", "messageId": message_id}

        if self.provider == "resend":
            return await asyncio.to_thread(self._send_via_resend, recipients, subject, body, template)

        return await asyncio.to_thread(self._send_via_smtp, recipients, subject, body)

    def _send_via_resend(self, recipients: List[str], subject: str, body: str, template: Optional[str]) -> Dict[str, Any]:
        if not self.settings.resend_api_key:
            raise EmailDeliveryError("Email service not configured - RESEND_API_KEY missing")

        resend.api_key = self.settings.resend_api_key
        email_data = {
            "from": self.settings.email_from_address,
            "to": recipients,
            "subject": subject,
            "html": body,
        }
        if template:
            email_data["tags"] = [{"name": "template", "value": template}]

        try:
            response = resend.Emails.send(email_data)
        except Exception as e:
            logger.error(f"Resend send failed for {recipients}: {e}")
            raise EmailDeliveryError(f"Failed to send email: {e}") from e

        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info(f"Email sent via Resend to {', '.join(recipients)}", extra={"message_id": message_id})
        return {"provider": "resend", "messageId": message_id}

    def _send_via_smtp(self, recipients: List[str], subject: str, body: str) -> Dict[str, Any]:
        settings = self.settings
        if not settings.smtp_host:
            raise EmailDeliveryError("Email service not configured - SMTP_HOST missing")

        sender = settings.email_from_address
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "html"))

        try:
            if settings.smtp_port == 465:
                server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port,
                                          context=ssl.create_default_context(), timeout=30)
            else:
                server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30)
                if settings.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
            try:
                if settings.smtp_username:
                    server.login(settings.smtp_username, settings.smtp_password or "")
                server.sendmail(sender.split("<")[-1].rstrip(">"), recipients, msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed via {settings.smtp_host}: {e}")
            raise EmailDeliveryError(f"SMTP failed: {e}") from e

        message_id = f"smtp-{uuid4().hex[:12]}"
        logger.info(f"Email sent via SMTP ({settings.smtp_host}) to {', '.join(recipients)}")
        return {"provider": "smtp", "messageId": message_id}
