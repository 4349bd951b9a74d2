"""Job queue adapter: Celery delivery task, queued sink and job metrics."""

from .celery_queue import DELIVER_TASK, QueuedSink, create_celery_app
from .tracker import JobTracker

__all__ = ["DELIVER_TASK", "JobTracker", "QueuedSink", "create_celery_app"]
