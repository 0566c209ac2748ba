# cyberguard/notifications/email.py
from __future__ import annotations

import logging
from typing import Optional

import sendgrid
from sendgrid.helpers.mail import Content, Email, Mail, To

from cyberguard.notifications import templates

logger = logging.getLogger(__name__)


class EmailTransport:
    """
    Templated email over SendGrid.

    send_templated_email() never raises: an unconfigured transport or a
    SendGrid error is logged and reported as False. Callers treat email as
    best-effort.
    """

    def __init__(self, api_key: Optional[str], from_email: str = "CyberGuard <noreply@cyberguard.local>"):
        self.api_key = (api_key or "").strip()
        self.from_email = from_email

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _client(self):
        return sendgrid.SendGridAPIClient(api_key=self.api_key)

    def send_templated_email(self, to: str, template_kind: str, data: dict) -> bool:
        subject, html = templates.render(template_kind, data)

        if not self.configured:
            logger.warning("Email not sent - SendGrid not configured (to=%s, subject=%s)", to, subject)
            return False

        message = Mail(
            from_email=Email(self.from_email),
            to_emails=[To(to)],
            subject=subject,
            html_content=Content("text/html", html),
        )

        try:
            response = self._client().send(message)
        except Exception as e:
            logger.error("Failed to send email to %s (%s): %s", to, template_kind, str(e)[:200])
            return False

        if response.status_code in (200, 201, 202):
            logger.info("Email sent to %s (%s)", to, template_kind)
            return True

        logger.warning("SendGrid returned %s for %s (%s)", response.status_code, to, template_kind)
        return False
