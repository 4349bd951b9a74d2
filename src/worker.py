"""
Celery worker entry point.

Run with:
    celery -A src.worker worker --loglevel=INFO

The API process builds its producer app with the same create_celery_app()
call, so both sides agree on task names, queue and retry policy.
"""

from src.adapters.factory import build_job_tracker, build_notification_service
from src.adapters.queue import create_celery_app
from src.config.logging import configure_logging
from src.config.settings import get_settings

settings = get_settings()
configure_logging(settings.log_level)

celery_app = create_celery_app(
    settings,
    service_factory=lambda: build_notification_service(settings),
    tracker=build_job_tracker(settings),
)
