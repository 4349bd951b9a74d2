"""
Notification dispatcher - channel-polymorphic send facade.

NotificationService routes a payload to the email or SMS provider by its
channel tag and normalizes every outcome into a NotificationResult.
Provider failures are converted into ``success=False`` results instead of
propagating, so one channel's outage never blocks the other in a bulk
send.

SynchronousSink is the in-process NotificationSink: it schedules the bulk
send as a background task and returns immediately. The queued variant
lives with the job queue adapter.
"""

import asyncio
import html
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .exceptions import DeliveryFailed
from .models import (
    EmailMessage,
    NotificationChannel,
    NotificationPayload,
    NotificationPriority,
    NotificationResult,
    SmsMessage,
)
from .ports import EmailProvider, Notifier, SMSProvider

logger = logging.getLogger(__name__)

VERIFICATION_SUBJECT = "Verify Your Email Address"

_VERIFICATION_HTML = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>Email Verification</title></head>
  <body>
    <h2>Hello {name}!</h2>
    <p>Thank you for signing up! To complete your registration, please verify
    your email address using the code below:</p>
    <p style="font-size:32px;letter-spacing:8px;font-weight:bold">{code}</p>
    <p>This code expires in {minutes} minutes.</p>
    <p><strong>Security Tip:</strong> Never share this code with anyone.</p>
    <p>If you didn't request this verification, please ignore this email.</p>
  </body>
</html>
"""


def mask_mobile(mobile_no: str) -> str:
    """Replace all but the last four digits with '*' for log lines."""
    if len(mobile_no) <= 4:
        return "*" * len(mobile_no)
    return "*" * (len(mobile_no) - 4) + mobile_no[-4:]


def _minutes(ttl_seconds: int) -> int:
    return max(1, ttl_seconds // 60)


def verification_email(
    email: str, name: str, code: str, ttl_seconds: int
) -> NotificationPayload:
    return NotificationPayload(
        channel=NotificationChannel.EMAIL,
        to=email,
        subject=VERIFICATION_SUBJECT,
        html=_VERIFICATION_HTML.format(
            name=html.escape(name or "User"), code=code, minutes=_minutes(ttl_seconds)
        ),
        priority=NotificationPriority.HIGH,
        metadata={"purpose": "verification"},
    )


def verification_sms(mobile_no: str, code: str, ttl_seconds: int) -> NotificationPayload:
    return NotificationPayload(
        channel=NotificationChannel.SMS,
        to=mobile_no,
        message=(
            f"Your verification OTP is: {code}. "
            f"Valid for {_minutes(ttl_seconds)} minutes."
        ),
        priority=NotificationPriority.HIGH,
        metadata={"purpose": "verification"},
    )


@dataclass
class NotificationService:
    """Implements the Notifier port over one email and one SMS provider."""

    email_provider: EmailProvider
    sms_provider: SMSProvider

    async def send(self, payload: NotificationPayload) -> NotificationResult:
        try:
            if payload.channel is NotificationChannel.EMAIL:
                return await self._send_email(payload)
            if payload.channel is NotificationChannel.SMS:
                return await self._send_sms(payload)
            raise DeliveryFailed(str(payload.channel), "unsupported notification channel")
        except Exception as e:
            logger.error(
                "Notification sending failed",
                extra={"channel": str(payload.channel.value), "error": str(e)},
            )
            return NotificationResult.failed(payload.channel, str(e))

    async def _send_email(self, payload: NotificationPayload) -> NotificationResult:
        receipt = await self.email_provider.send_email(
            EmailMessage(
                to=payload.to,
                subject=payload.subject or "Notification",
                html=payload.html or payload.message or "",
                attachments=payload.attachments,
            )
        )
        return NotificationResult.ok(NotificationChannel.EMAIL, receipt.message_id)

    async def _send_sms(self, payload: NotificationPayload) -> NotificationResult:
        receipt = await self.sms_provider.send_sms(
            SmsMessage(to=payload.to, body=payload.message or "")
        )
        return NotificationResult.ok(NotificationChannel.SMS, receipt.message_id)

    async def send_bulk(
        self, payloads: Sequence[NotificationPayload]
    ) -> list[NotificationResult]:
        """
        Fan out every send and collect all outcomes.

        Every payload is attempted even when siblings fail; partial failure
        is reported in the results, never raised.
        """
        outcomes = await asyncio.gather(
            *(self.send(payload) for payload in payloads), return_exceptions=True
        )
        results: list[NotificationResult] = []
        for payload, outcome in zip(payloads, outcomes):
            if isinstance(outcome, BaseException):
                results.append(NotificationResult.failed(payload.channel, str(outcome)))
            else:
                results.append(outcome)

        failed = sum(1 for r in results if not r.success)
        logger.info(
            "Bulk notification sending completed",
            extra={"total": len(results), "successful": len(results) - failed, "failed": failed},
        )
        return results


@dataclass
class SynchronousSink:
    """
    NotificationSink that delivers in-process, off the request path.

    Holds references to in-flight tasks so they are not garbage collected
    before completion.
    """

    notifier: Notifier
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    async def submit(self, payloads: Sequence[NotificationPayload]) -> None:
        task = asyncio.create_task(self._deliver(list(payloads)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, payloads: list[NotificationPayload]) -> None:
        results = await self.notifier.send_bulk(payloads)
        for result in results:
            if not result.success:
                logger.warning(
                    "Notification delivery failed",
                    extra={"channel": result.channel.value, "error": result.error},
                )

    async def drain(self) -> None:
        """Wait for every in-flight delivery; used at shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
