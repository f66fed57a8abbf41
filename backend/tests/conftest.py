"""
Pytest fixtures for Hi-Vis loyalty backend tests.

Provides test database setup, member factories, and test client.
"""

from datetime import datetime

import pytest
from hivis import create_app
from hivis.extensions import db
from hivis.models import Reward, User
from hivis.models.rewards import CATEGORY_DRINK
from hivis.services import notification_service


# Fixed "now" for deterministic streak/season behaviour (UTC-naive)
NOW = datetime(2026, 3, 10, 9, 30)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOYALTY_TIMEZONE': 'UTC',
        'INTAKE_API_KEY': None,
        'ADMIN_API_KEY': None,
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
def sent_notifications(app):
    """Capture notifications dispatched through the sink chain."""
    sent = []

    def sink(user_id, title, message, kind):
        sent.append({"user_id": user_id, "title": title, "message": message, "kind": kind})

    notification_service.register_sink(app, sink)
    yield sent
    app.extensions[notification_service.SINKS_EXTENSION_KEY].remove(sink)


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory for members; loyalty state can be preset for scenario tests."""
    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        n = counter["n"]
        fields.setdefault("email", f"member{n}@hivis.test")
        fields.setdefault("first_name", f"Member{n}")
        fields.setdefault("last_name", "Tester")
        fields.setdefault("suburb", "Parramatta")
        user = User(**fields)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def reward(db_session):
    """A 300-point catalog reward."""
    r = Reward(name="Smoko Combo", description="Drink and snack", points_cost=300, category=CATEGORY_DRINK)
    db_session.add(r)
    db_session.commit()
    return r
