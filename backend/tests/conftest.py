"""
Pytest fixtures for loyalty backend tests.

Provides an in-memory app with a recording notification sink, per-test
table cleanup, users at every role, and bearer-token headers.
"""

from datetime import timedelta

import pytest

from loyalty import create_app
from loyalty.extensions import db
from loyalty.models import Event, EventGuest, EventOrganizer, Promotion, Transaction, User
from loyalty.models.promotions import PROMO_AUTOMATIC
from loyalty.models.transactions import TX_PURCHASE, TX_REDEMPTION
from loyalty.models.users import ROLE_CASHIER, ROLE_MANAGER, ROLE_REGULAR, ROLE_SUPERUSER
from loyalty.services.auth_service import hash_password, issue_token
from loyalty.services.notification_service import NotificationSink
from loyalty.time_utils import to_utc_z, utcnow


PASSWORD = "Password123!"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'NOTIFICATIONS_ASYNC': False,
    'BCRYPT_ROUNDS': 4,
    'JWT_SECRET': 'test-jwt-secret',
}


class RecordingSink(NotificationSink):
    """Keeps every delivered notification in memory."""

    def __init__(self):
        self.sent = []

    def notify(self, user_id, kind, message):
        self.sent.append((user_id, kind, message))

    def messages_for(self, user_id):
        return [message for uid, _, message in self.sent if uid == user_id]


@pytest.fixture(scope='session')
def sink():
    return RecordingSink()


@pytest.fixture(scope='session')
def app(sink):
    """Create application for testing."""
    app = create_app(TEST_CONFIG, notification_sink=sink)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, sink):
    """Fresh data for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        sink.sent.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def engine(app, db_session):
    return app.extensions["ledger"]


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user("regular1", role=..., verified=..., suspicious=...)."""
    def _make(utorid, role=ROLE_REGULAR, *, verified=True, suspicious=False, password=PASSWORD):
        user = User(
            utorid=utorid,
            name=utorid.capitalize(),
            email=f"{utorid}@mail.utoronto.ca",
            role=role,
            verified=verified,
            suspicious=suspicious,
            password_hash=hash_password(password),
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def regular(make_user):
    return make_user("regular1")


@pytest.fixture(scope='function')
def other_regular(make_user):
    return make_user("regular2")


@pytest.fixture(scope='function')
def cashier(make_user):
    return make_user("cashier1", ROLE_CASHIER)


@pytest.fixture(scope='function')
def manager(make_user):
    return make_user("manager1", ROLE_MANAGER)


@pytest.fixture(scope='function')
def superuser(make_user):
    return make_user("superusr", ROLE_SUPERUSER)


@pytest.fixture(scope='function')
def make_promotion(db_session):
    """Factory for promotions; active for the next week unless told otherwise."""
    def _make(name="Promo", promo_type=PROMO_AUTOMATIC, *, start=None, end=None, **fields):
        now = utcnow()
        promo = Promotion(
            name=name,
            description=f"{name} description",
            type=promo_type,
            start_time=start or now - timedelta(hours=1),
            end_time=end or now + timedelta(days=7),
            **fields,
        )
        db_session.add(promo)
        db_session.commit()
        return promo
    return _make


@pytest.fixture(scope='function')
def make_event(db_session):
    """Factory for events with optional organizers and guests."""
    def _make(name="Event", *, start=None, end=None, capacity=None, points=100,
              published=True, organizers=(), guests=()):
        now = utcnow()
        event = Event(
            name=name,
            description=f"{name} description",
            location="Bahen Centre",
            start_time=start or now + timedelta(days=1),
            end_time=end or now + timedelta(days=1, hours=3),
            capacity=capacity,
            points_allocated=points,
            points_awarded=0,
            published=published,
        )
        for user in organizers:
            event.organizers.append(EventOrganizer(user_id=user.id))
        for user in guests:
            event.guests.append(EventGuest(user_id=user.id))
        db_session.add(event)
        db_session.commit()
        return event
    return _make


def auth_headers(user) -> dict:
    """Helper to create Authorization headers for a user."""
    token, _ = issue_token(user)
    return {'Authorization': f'Bearer {token}'}


def iso(dt) -> str:
    return to_utc_z(dt)


def ledger_balance(user_id: int) -> int:
    """Balance implied by the user's transaction history alone."""
    total = 0
    for tx in db.session.query(Transaction).filter_by(user_id=user_id).all():
        if tx.type == TX_PURCHASE:
            total += 0 if tx.suspicious else tx.amount
        elif tx.type == TX_REDEMPTION:
            total += -tx.amount if tx.processed else 0
        else:
            total += tx.amount
    return total
