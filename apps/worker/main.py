"""Celery worker and beat entrypoint.

Run with:
    celery -A apps.worker.main:celery_app worker --loglevel=info
    celery -A apps.worker.main:celery_app beat --loglevel=info

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in the donateconnect.tasks package - no autodiscovery.

The worker is optional. The API serves correct realtime state without it;
the sweep only tidies rows readers already ignore.
"""

from celery.signals import worker_process_init

from donateconnect.celery import celery_app
from donateconnect.logging import configure_logging, get_logger

# Import tasks to register them with Celery
from donateconnect.tasks import sweep_expired_realtime_state  # noqa: F401


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when worker process starts."""
    configure_logging()
    logger = get_logger(__name__)
    logger.info("celery_worker_started")


# Command: celery -A apps.worker.main:celery_app worker ...
__all__ = ["celery_app"]
