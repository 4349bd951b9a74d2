"""
SMTP email adapter - Implements EmailProvider protocol over smtplib.

smtplib is blocking, so each send runs in a worker thread to keep the
event loop free.
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage as MimeMessage
from email.utils import make_msgid

from src.domain.exceptions import DeliveryFailed
from src.domain.models import EmailMessage, ProviderReceipt

logger = logging.getLogger(__name__)


class SmtpEmailProvider:
    """Implements EmailProvider protocol via an SMTP relay with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        from_email: str,
        from_name: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not host or not from_email:
            raise ValueError("Email configuration is incomplete")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._from_email = from_email
        self._from_name = from_name
        self._timeout = timeout_seconds

    def _build(self, message: EmailMessage) -> MimeMessage:
        mime = MimeMessage()
        mime["Subject"] = message.subject
        mime["From"] = f"{self._from_name} <{self._from_email}>"
        mime["To"] = message.to
        mime["Message-ID"] = make_msgid(domain=self._from_email.split("@")[-1])
        if message.text:
            mime.set_content(message.text)
        mime.add_alternative(message.html, subtype="html")
        return mime

    def _deliver(self, mime: MimeMessage) -> None:
        if self._port == 465:
            with smtplib.SMTP_SSL(
                self._host, self._port, timeout=self._timeout, context=ssl.create_default_context()
            ) as smtp:
                self._login_and_send(smtp, mime)
            return

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            smtp.starttls(context=ssl.create_default_context())
            self._login_and_send(smtp, mime)

    def _login_and_send(self, smtp: smtplib.SMTP, mime: MimeMessage) -> None:
        if self._username and self._password:
            smtp.login(self._username, self._password)
        smtp.send_message(mime)

    async def send_email(self, message: EmailMessage) -> ProviderReceipt:
        mime = self._build(message)
        try:
            await asyncio.to_thread(self._deliver, mime)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Email sending failed",
                extra={"recipient": message.to, "subject": message.subject, "error": str(e)},
            )
            raise DeliveryFailed("email", str(e)) from e

        logger.info("Email sent successfully", extra={"message_id": mime["Message-ID"]})
        return ProviderReceipt(message_id=mime["Message-ID"])
