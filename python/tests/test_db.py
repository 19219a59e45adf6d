"""Database smoke tests.

Verifies connectivity, the transaction helper, and the portable upsert
helpers on whichever backend DATABASE_URL selects.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from donateconnect.db.models import ChatPresence, Listing, Profile
from donateconnect.db.session import transaction
from donateconnect.db.types import utcnow
from donateconnect.db.upsert import insert_or_ignore, upsert
from tests.factories import create_test_conversation


class TestDatabaseConnectivity:
    """Tests for basic database operations."""

    def test_session_opens_and_executes_query(self, db_session: Session):
        """Database session can execute a simple query."""
        row = db_session.execute(text("SELECT 1 AS value")).fetchone()

        assert row is not None
        assert row[0] == 1

    def test_foreign_keys_are_enforced(self, db_session: Session):
        db_session.add(Listing(owner_id=uuid4(), name="Orphan", category="other"))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


class TestTransaction:
    def test_commits_on_success(self, db_session: Session):
        user_id = uuid4()

        with transaction(db_session):
            db_session.add(Profile(id=user_id))

        db_session.expire_all()
        assert db_session.get(Profile, user_id) is not None

    def test_rolls_back_on_error(self, db_session: Session):
        user_id = uuid4()

        with pytest.raises(RuntimeError):
            with transaction(db_session):
                db_session.add(Profile(id=user_id))
                db_session.flush()
                raise RuntimeError("boom")

        assert db_session.get(Profile, user_id) is None


class TestUpsert:
    def test_insert_or_ignore_reports_insert(self, db_session: Session):
        user_id = uuid4()

        assert insert_or_ignore(db_session, Profile, {"id": user_id}, ["id"]) is True
        assert insert_or_ignore(db_session, Profile, {"id": user_id}, ["id"]) is False
        db_session.commit()

        count = db_session.execute(
            select(func.count()).select_from(Profile).where(Profile.id == user_id)
        ).scalar_one()
        assert count == 1

    def test_upsert_updates_only_named_columns(self, db_session: Session):
        convo = create_test_conversation(db_session)
        first_seen = utcnow()
        values = {
            "id": uuid4(),
            "user_id": convo.owner_id,
            "request_id": convo.conversation_id,
            "is_online": True,
            "last_seen": first_seen,
        }
        upsert(db_session, ChatPresence, values, ["user_id", "request_id"], ["is_online"])
        upsert(
            db_session,
            ChatPresence,
            {**values, "id": uuid4(), "is_online": False},
            ["user_id", "request_id"],
            ["is_online"],
        )
        db_session.commit()
        db_session.expire_all()

        rows = db_session.execute(select(ChatPresence)).scalars().all()
        assert len(rows) == 1
        assert rows[0].id == values["id"]
        assert rows[0].is_online is False
