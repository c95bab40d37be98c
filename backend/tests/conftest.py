"""
Pytest fixtures for registry backend tests.

Provides test database setup, user/membership factories, session tokens,
and the test client.
"""

from datetime import datetime

import pytest
from registry import create_app
from registry.extensions import db
from registry.models import Member, Membership, MembershipType, User
from registry.services import session_service


WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_WEBHOOK_SECRET': WEBHOOK_SECRET,
        'STUDENT_EMAIL_DOMAIN': 'aalto.fi',
        'AUTO_APPROVAL_MAX_GAP_DAYS': 180,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user("jane@example.org", is_admin=False, **columns)."""
    counter = {"n": 0}

    def _make(email: str | None = None, *, is_admin: bool = False, **kwargs) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.org",
            first_names=kwargs.pop("first_names", f"Test{counter['n']}"),
            last_name=kwargs.pop("last_name", "User"),
            is_admin=is_admin,
            created_at=kwargs.pop("created_at", datetime(2024, 1, 1)),
            **kwargs,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def member_user(make_user):
    """A regular (non-board) user."""
    return make_user("member@example.org", first_names="Maija", last_name="Meikäläinen")


@pytest.fixture(scope='function')
def admin_user(make_user):
    """A board member."""
    return make_user("board@example.org", is_admin=True, first_names="Bo", last_name="Board")


@pytest.fixture(scope='function')
def member_headers(member_user):
    _, token = session_service.create_session(member_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = session_service.create_session(admin_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def membership_type(db_session):
    row = MembershipType(name={"fi": "Varsinainen jäsen", "en": "Regular member"}, created_at=datetime(2020, 1, 1))
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def make_membership(db_session, membership_type):
    """Factory: make_membership(start, end, type_id=None, **columns)."""
    def _make(start: datetime, end: datetime, *, membership_type_id: int | None = None, **kwargs) -> Membership:
        row = Membership(
            membership_type_id=membership_type_id or membership_type.id,
            start_time=start,
            end_time=end,
            created_at=datetime(2020, 1, 1),
            **kwargs,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _make


@pytest.fixture(scope='function')
def make_member(db_session):
    """Factory: make_member(user, membership, status)."""
    def _make(user: User, membership: Membership, status: str, **kwargs) -> Member:
        row = Member(
            user_id=user.id,
            membership_id=membership.id,
            status=status,
            created_at=datetime(2020, 1, 1),
            **kwargs,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _make


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
