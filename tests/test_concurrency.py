"""Concurrent requests against a file-backed SQLite database, one app context per thread."""

import threading

import pytest

import attendance
import ledger
import registrations
import rewards
from app import create_app
from config import TestConfig
from errors import ServiceError
from extensions import db
from models import Event, EventAttendance, EventRegistration, Reward

WORKERS = 6


@pytest.fixture
def app(tmp_path):
    config = type("FileDBConfig", (TestConfig,), {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
    })
    app = create_app(config)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_together(app, calls):
    """Start every call at once, each in its own thread and app context.

    Returns ``"ok"`` or the failure reason per call, in order.
    """
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(i, fn):
        with app.app_context():
            barrier.wait()
            try:
                fn()
                outcomes[i] = "ok"
            except ServiceError as e:
                outcomes[i] = e.reason

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_last_unit_goes_to_exactly_one_redeemer(app, make_user, make_reward):
    users = [make_user(f"user{i}", points=100) for i in range(WORKERS)]
    reward_id = make_reward(points_required=10, stock=1)

    outcomes = run_together(app, [lambda u=u: rewards.redeem(u, reward_id) for u in users])

    assert outcomes.count("ok") == 1
    assert outcomes.count("out_of_stock") == WORKERS - 1
    with app.app_context():
        assert db.session.get(Reward, reward_id).stock == 0
        for u in users:
            assert ledger.balance(u) == ledger.replay_balance(u)
        assert sum(ledger.balance(u) for u in users) == WORKERS * 100 - 10


def test_duplicate_redeems_never_overdraw(app, make_user, make_reward):
    make_user("alice", points=30)
    reward_id = make_reward(points_required=10, stock=WORKERS)

    outcomes = run_together(app, [lambda: rewards.redeem("alice", reward_id)] * WORKERS)

    assert outcomes.count("ok") == 3
    assert outcomes.count("insufficient_points") == WORKERS - 3
    with app.app_context():
        assert ledger.balance("alice") == 0
        assert ledger.replay_balance("alice") == 0
        assert db.session.get(Reward, reward_id).stock == WORKERS - 3


def test_registrations_stop_at_capacity(app, make_user, make_event):
    make_user("org")
    users = [make_user(f"user{i}") for i in range(WORKERS)]
    event_id = make_event("org", capacity=2)

    outcomes = run_together(app, [lambda u=u: registrations.register(event_id, u) for u in users])

    assert outcomes.count("ok") == 2
    assert outcomes.count("capacity_exceeded") == WORKERS - 2
    with app.app_context():
        assert registrations.registration_count(event_id) == 2
        assert db.session.get(Event, event_id).registered_count == 2


def test_double_registration_by_one_user(app, make_user, make_event):
    make_user("org")
    make_user("bob")
    event_id = make_event("org")

    outcomes = run_together(app, [lambda: registrations.register(event_id, "bob")] * WORKERS)

    assert outcomes.count("ok") == 1
    assert outcomes.count("already_registered") == WORKERS - 1
    with app.app_context():
        assert db.session.get(Event, event_id).registered_count == 1


def _registered(app, event_id, user_id):
    with app.app_context():
        return registrations.register(event_id, user_id).qr_token


def test_repeated_scans_credit_once(app, make_user, make_event):
    make_user("org")
    make_user("bob")
    event_id = make_event("org")
    token = _registered(app, event_id, "bob")

    outcomes = run_together(app, [lambda: attendance.verify(event_id, "bob", token, "org")] * WORKERS)

    assert outcomes.count("ok") == 1
    assert outcomes.count("already_verified") == WORKERS - 1
    with app.app_context():
        assert db.session.query(EventAttendance).filter_by(event_id=event_id).count() == 1
        assert ledger.balance("bob") == app.config["ATTENDANCE_POINTS"]
        assert ledger.replay_balance("bob") == ledger.balance("bob")


@pytest.mark.parametrize("round_", range(5))
def test_cancel_racing_check_in_stays_consistent(app, make_user, make_event, round_):
    make_user("org")
    make_user("bob")
    event_id = make_event("org")
    token = _registered(app, event_id, "bob")

    cancel_outcome, verify_outcome = run_together(app, [
        lambda: registrations.cancel(event_id, "bob"),
        lambda: attendance.verify(event_id, "bob", token, "org"),
    ])

    with app.app_context():
        attended = db.session.query(EventAttendance).filter_by(event_id=event_id).count()
        registered = db.session.query(EventRegistration).filter_by(event_id=event_id).count()
        points = ledger.balance("bob")
        assert points == ledger.replay_balance("bob")
        assert db.session.get(Event, event_id).registered_count == registered

    if verify_outcome == "ok":
        assert cancel_outcome == "already_attended"
        assert (attended, registered, points) == (1, 1, app.config["ATTENDANCE_POINTS"])
    else:
        assert (cancel_outcome, verify_outcome) == ("ok", "not_registered")
        assert (attended, registered, points) == (0, 0, 0)
