from datetime import datetime, timezone

import pytest

import ledger
from app import create_app
from config import TestConfig
from extensions import db
from models import Event, Reward, User


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def auth(user_id):
    return {TestConfig.IDENTITY_HEADER: user_id}


@pytest.fixture
def make_user(app):
    def _make(user_id, points=0, role="user", full_name=None):
        with app.app_context():
            db.session.add(User(
                id=user_id,
                email=f"{user_id}@example.com",
                full_name=full_name or f"User {user_id}",
                role=role,
            ))
            db.session.commit()
            if points:
                ledger.credit(user_id, points, "Seed points")
        return user_id
    return _make


@pytest.fixture
def make_event(app):
    def _make(organizer_id, capacity=None, status="published", title="Beach cleanup"):
        with app.app_context():
            event = Event(
                organizer_id=organizer_id,
                title=title,
                location="Pantai Kuta",
                event_date=datetime(2026, 11, 1, tzinfo=timezone.utc),
                event_time="08:00",
                capacity=capacity,
                status=status,
            )
            db.session.add(event)
            db.session.commit()
            return event.id
    return _make


@pytest.fixture
def make_reward(app):
    def _make(points_required=10, stock=3, name="Reusable tote bag"):
        with app.app_context():
            reward = Reward(name=name, points_required=points_required, stock=stock)
            db.session.add(reward)
            db.session.commit()
            return reward.id
    return _make
