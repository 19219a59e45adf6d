"""Tests for profile bootstrap on first authenticated request."""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from donateconnect.db.models import Profile
from donateconnect.services.bootstrap import ensure_profile
from tests.factories import create_test_profile
from tests.helpers import auth_headers, create_test_user_id


class TestEnsureProfile:
    def test_creates_missing_profile(self, db_session: Session):
        user_id = create_test_user_id()

        ensure_profile(db_session, user_id)

        assert db_session.get(Profile, user_id) is not None

    def test_idempotent(self, db_session: Session):
        user_id = create_test_profile(db_session, display_name="Dana")

        ensure_profile(db_session, user_id)
        ensure_profile(db_session, user_id)

        count = db_session.execute(select(func.count()).select_from(Profile)).scalar_one()
        assert count == 1
        db_session.expire_all()
        assert db_session.get(Profile, user_id).display_name == "Dana"

    def test_first_request_bootstraps(self, client, db_session: Session):
        user_id = create_test_user_id()

        response = client.get("/notifications", headers=auth_headers(user_id))

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.get(Profile, user_id) is not None
