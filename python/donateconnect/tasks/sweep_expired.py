"""Expired realtime state sweeper.

Celery beat job: sweep_expired_realtime_state
- live_locations: is_sharing=true AND expires_at <= now  ->  is_sharing=false
- chat_presence:  is_online=true AND last_seen <= now - PRESENCE_STALE_SECONDS
                  ->  is_online=false

Purely cosmetic. Readers already treat these rows as not live / offline by
comparing timestamps, so a missed or late sweep changes nothing observable
through the API.
"""

from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from donateconnect.celery import celery_app
from donateconnect.config import get_settings
from donateconnect.db.models import ChatPresence, LiveLocation
from donateconnect.db.session import get_session_factory
from donateconnect.db.types import utcnow
from donateconnect.logging import clear_task_context, configure_task_logging, get_logger

logger = get_logger(__name__)


def sweep_expired(
    db: Session, now: datetime | None = None, stale_after: timedelta | None = None
) -> dict[str, int]:
    """Flip expired live locations and stale presence rows. Commits.

    Returns:
        Counts of rows changed per table.
    """
    now = now or utcnow()
    if stale_after is None:
        stale_after = timedelta(seconds=get_settings().presence_stale_seconds)

    locations = db.execute(
        update(LiveLocation)
        .where(LiveLocation.is_sharing.is_(True), LiveLocation.expires_at <= now)
        .values(is_sharing=False, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount

    presence = db.execute(
        update(ChatPresence)
        .where(ChatPresence.is_online.is_(True), ChatPresence.last_seen <= now - stale_after)
        .values(is_online=False)
        .execution_options(synchronize_session=False)
    ).rowcount

    db.commit()
    return {"live_locations": locations, "chat_presence": presence}


@celery_app.task(bind=True, max_retries=0, name="sweep_expired_realtime_state")
def sweep_expired_realtime_state(self, request_id: str | None = None) -> dict:
    """Beat entrypoint for sweep_expired."""
    configure_task_logging(request_id, self.name, self.request.id)
    db = get_session_factory()()
    try:
        counts = sweep_expired(db)
        if any(counts.values()):
            logger.info("sweep_complete", **counts)
        return counts
    except Exception as e:
        db.rollback()
        logger.error("sweep_error", error=str(e))
        raise
    finally:
        db.close()
        clear_task_context()
