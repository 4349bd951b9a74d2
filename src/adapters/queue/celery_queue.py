"""
Celery job queue adapter - durable, prioritized notification delivery.

create_celery_app() builds the Celery application and registers the
delivery task. QueuedSink is the NotificationSink used when
notification_mode is "queued": each payload becomes one job, submitted
with its numeric priority (1 = critical is served first) and tracked in
the JobTracker sorted sets.

A job is attempted up to queue_max_attempts times with exponential
backoff (queue_backoff_seconds * 2**retry). After the last failed attempt
it is parked in the failed set together with its payload and error.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from celery import Celery, Task

from src.config.settings import Settings
from src.domain.exceptions import DeliveryFailed
from src.domain.models import NotificationPayload
from src.domain.ports import Notifier

from .tracker import JobTracker

logger = logging.getLogger(__name__)

DELIVER_TASK = "notifications.deliver"


def create_celery_app(
    settings: Settings,
    service_factory: Callable[[], Notifier],
    tracker: JobTracker,
) -> Celery:
    """
    Build the Celery app and register the delivery task.

    Args:
        settings: Application settings (broker, queue name, retry policy)
        service_factory: Builds the Notifier used by the worker; called lazily
        tracker: Job tracker recording every state change

    Returns:
        Configured Celery application
    """
    app = Celery("stagedreg", broker=settings.broker_url)
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        task_default_queue=settings.queue_name,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_ignore_result=True,
        worker_concurrency=settings.queue_concurrency,
        worker_prefetch_multiplier=1,
        worker_hijack_root_logger=False,
        broker_transport_options={
            "queue_order_strategy": "priority",
            "priority_steps": list(range(10)),
            "sep": ":",
        },
    )

    max_retries = max(0, settings.queue_max_attempts - 1)
    backoff = settings.queue_backoff_seconds
    timeout = settings.queue_job_timeout_seconds
    notifier: list[Notifier] = []

    def get_notifier() -> Notifier:
        if not notifier:
            notifier.append(service_factory())
        return notifier[0]

    # shared=False keeps this closure bound to this app only
    @app.task(bind=True, name=DELIVER_TASK, max_retries=max_retries, shared=False)
    def deliver(self: Task, payload_data: dict[str, Any]) -> dict[str, Any]:
        job_id = self.request.id
        attempt = self.request.retries + 1
        payload = NotificationPayload.from_dict(payload_data)
        tracker.mark_active(job_id)

        try:
            result = asyncio.run(asyncio.wait_for(get_notifier().send(payload), timeout))
            error = None if result.success else (result.error or "delivery failed")
        except asyncio.TimeoutError:
            result = None
            error = f"delivery timed out after {timeout}s"

        if error is None:
            tracker.mark_completed(job_id)
            logger.info(
                "Notification job completed",
                extra={"job_id": job_id, "channel": payload.channel.value, "attempt": attempt},
            )
            return {"success": True, "message_id": result.message_id}

        if self.request.retries >= max_retries:
            tracker.mark_failed(job_id, payload_data, error)
            logger.error(
                "Notification job failed permanently",
                extra={"job_id": job_id, "channel": payload.channel.value, "error": error},
            )
            return {"success": False, "error": error}

        countdown = backoff * (2**self.request.retries)
        tracker.mark_delayed(job_id)
        logger.warning(
            "Notification job failed, retrying",
            extra={
                "job_id": job_id,
                "channel": payload.channel.value,
                "attempt": attempt,
                "countdown": countdown,
            },
        )
        raise self.retry(exc=DeliveryFailed(payload.channel.value, error), countdown=countdown)

    return app


@dataclass
class QueuedSink:
    """NotificationSink that hands every payload to the Celery queue."""

    app: Celery
    tracker: JobTracker

    async def submit(self, payloads: Sequence[NotificationPayload]) -> None:
        for payload in payloads:
            await asyncio.to_thread(self._enqueue, payload)

    def _enqueue(self, payload: NotificationPayload) -> str:
        job_id = str(uuid.uuid4())
        self.tracker.mark_waiting(job_id)
        try:
            self.app.tasks[DELIVER_TASK].apply_async(
                args=[payload.to_dict()],
                task_id=job_id,
                priority=payload.priority.numeric,
            )
        except Exception:
            self.tracker.forget(job_id)
            raise
        logger.info(
            "Notification job queued",
            extra={
                "job_id": job_id,
                "channel": payload.channel.value,
                "priority": payload.priority.value,
            },
        )
        return job_id

    async def metrics(self) -> dict[str, int]:
        return await asyncio.to_thread(self.tracker.counts)

    async def failed_jobs(self, limit: int = 50) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.tracker.failed_jobs, limit)
