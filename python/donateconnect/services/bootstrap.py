"""Profile bootstrap.

Every authenticated user gets a profiles row on first request, so foreign
keys from listings, requests and realtime tables always resolve.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from donateconnect.db.models import Profile
from donateconnect.db.session import transaction
from donateconnect.db.upsert import insert_or_ignore

logger = logging.getLogger(__name__)


def ensure_profile(db: Session, user_id: UUID) -> None:
    """Create the user's profile if it does not exist.

    Race-safe and idempotent: concurrent first requests converge on one row
    through INSERT ON CONFLICT DO NOTHING.
    """
    with transaction(db):
        created = insert_or_ignore(db, Profile, {"id": user_id}, conflict_columns=["id"])

    if created:
        logger.info("Created profile for user %s", user_id)
