"""Celery application configuration.

Central configuration for Celery used by the worker and beat. The realtime
core never depends on a worker: the only scheduled job is a cosmetic sweep
of expired live locations and stale presence.

Usage:
    celery -A apps.worker.main:celery_app worker --loglevel=info
    celery -A apps.worker.main:celery_app beat --loglevel=info
"""

from celery import Celery

from donateconnect.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery("donateconnect")

# Configure from settings
celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

# Task configuration
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

# Default queue
celery_app.conf.task_default_queue = "default"

celery_app.conf.beat_schedule = {
    "sweep-expired-realtime-state": {
        "task": "sweep_expired_realtime_state",
        "schedule": float(settings.sweep_interval_seconds),
    },
}

# For testing: allow eager mode (synchronous execution)
celery_app.conf.task_always_eager = False


def get_celery_app() -> Celery:
    """Get the Celery application instance.

    Returns:
        Configured Celery application.
    """
    return celery_app
