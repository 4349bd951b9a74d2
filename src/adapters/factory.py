"""
Adapter factory - builds providers and the notification sink from settings.

The provider for each channel and the sink variant are selected once, at
process startup, from configuration.
"""

import logging

from celery import Celery

from src.adapters.queue import JobTracker, QueuedSink
from src.adapters.sms import ConsoleSMSProvider, TwilioSMSProvider
from src.adapters.smtp import ConsoleEmailProvider, SmtpEmailProvider
from src.config.settings import Settings
from src.domain.notifications import NotificationService, SynchronousSink
from src.domain.ports import EmailProvider, NotificationSink, Notifier, SMSProvider

logger = logging.getLogger(__name__)


def build_email_provider(settings: Settings) -> EmailProvider:
    if settings.email_provider == "smtp":
        return SmtpEmailProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.from_email,
            from_name=settings.from_name,
        )
    return ConsoleEmailProvider()


def build_sms_provider(settings: Settings) -> SMSProvider:
    if settings.sms_provider == "twilio":
        return TwilioSMSProvider(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
            country_code=settings.default_country_code,
            base_url=settings.twilio_base_url,
        )
    return ConsoleSMSProvider()


def build_notification_service(settings: Settings) -> NotificationService:
    service = NotificationService(
        email_provider=build_email_provider(settings),
        sms_provider=build_sms_provider(settings),
    )
    logger.info(
        "Notification service initialized",
        extra={"email_provider": settings.email_provider, "sms_provider": settings.sms_provider},
    )
    return service


def build_job_tracker(settings: Settings) -> JobTracker:
    return JobTracker.from_url(
        settings.redis_url,
        queue_name=settings.queue_name,
        completed_retention_seconds=settings.queue_completed_retention_seconds,
        failed_retention_seconds=settings.queue_failed_retention_seconds,
    )


def build_sink(
    settings: Settings,
    notifier: Notifier,
    celery_app: Celery | None = None,
    tracker: JobTracker | None = None,
) -> NotificationSink:
    """
    Select the NotificationSink variant for notification_mode.

    Queued mode needs the Celery app; the tracker is built from settings
    when not supplied.
    """
    if settings.notification_mode == "queued":
        if celery_app is None:
            raise ValueError("Queued notification mode requires a Celery app")
        return QueuedSink(app=celery_app, tracker=tracker or build_job_tracker(settings))
    return SynchronousSink(notifier)
