import pytest

import attendance
import ledger
import registrations
from errors import AlreadyVerified, MissingFields, NotRegistered, TokenMismatch, Unauthorized
from extensions import db
from models import EventAttendance


@pytest.fixture
def checked_in_setup(make_user, make_event):
    make_user("org", full_name="Organizer")
    make_user("bob", full_name="Bob Santoso")
    event_id = make_event("org")
    return event_id


def _register(event_id, user_id):
    return registrations.register(event_id, user_id).qr_token


def _attendance_count(event_id):
    return db.session.query(EventAttendance).filter_by(event_id=event_id).count()


def test_verify_records_attendance_and_credits_points(app_ctx, checked_in_setup):
    event_id = checked_in_setup
    token = _register(event_id, "bob")

    record, user_name = attendance.verify(event_id, "bob", token, "org")

    assert user_name == "Bob Santoso"
    assert record.verified_by == "org"
    assert record.verified_at is not None
    assert _attendance_count(event_id) == 1
    assert ledger.balance("bob") == 20
    assert ledger.replay_balance("bob") == 20


def test_wrong_token_is_rejected_without_revealing_expected(app_ctx, checked_in_setup):
    event_id = checked_in_setup
    token = _register(event_id, "bob")

    with pytest.raises(TokenMismatch) as exc:
        attendance.verify(event_id, "bob", token[:-1] + "x", "org")

    assert token not in str(exc.value)
    assert _attendance_count(event_id) == 0
    assert ledger.balance("bob") == 0


def test_another_registrants_token_does_not_match(app_ctx, checked_in_setup, make_user):
    event_id = checked_in_setup
    make_user("carol")
    _register(event_id, "bob")
    carol_token = _register(event_id, "carol")

    with pytest.raises(TokenMismatch):
        attendance.verify(event_id, "bob", carol_token, "org")


def test_second_scan_reports_already_verified(app_ctx, checked_in_setup):
    event_id = checked_in_setup
    token = _register(event_id, "bob")
    attendance.verify(event_id, "bob", token, "org")

    with pytest.raises(AlreadyVerified):
        attendance.verify(event_id, "bob", token, "org")

    assert _attendance_count(event_id) == 1
    assert ledger.balance("bob") == 20


def test_missing_verifier(app_ctx, checked_in_setup):
    event_id = checked_in_setup
    token = _register(event_id, "bob")

    with pytest.raises(Unauthorized):
        attendance.verify(event_id, "bob", token, None)
    assert _attendance_count(event_id) == 0


@pytest.mark.parametrize("user_id,token", [(None, "abc"), ("bob", ""), ("", None)])
def test_missing_fields(app_ctx, checked_in_setup, user_id, token):
    with pytest.raises(MissingFields):
        attendance.verify(checked_in_setup, user_id, token, "org")


def test_unregistered_user(app_ctx, checked_in_setup):
    with pytest.raises(NotRegistered) as exc:
        attendance.verify(checked_in_setup, "bob", "anything", "org")
    assert exc.value.status_code == 400


def test_attendance_points_can_be_disabled(app_ctx, checked_in_setup):
    app_ctx.config["ATTENDANCE_POINTS"] = 0
    event_id = checked_in_setup
    token = _register(event_id, "bob")

    attendance.verify(event_id, "bob", token, "org")

    assert ledger.balance("bob") == 0


def test_list_attendees_first_verified_first(app_ctx, checked_in_setup, make_user):
    event_id = checked_in_setup
    make_user("carol", full_name="Carol")
    bob_token = _register(event_id, "bob")
    carol_token = _register(event_id, "carol")

    attendance.verify(event_id, "carol", carol_token, "org")
    attendance.verify(event_id, "bob", bob_token, "org")

    rows = attendance.list_attendees(event_id)
    assert [r["userId"] for r in rows] == ["carol", "bob"]
    assert [r["userName"] for r in rows] == ["Carol", "Bob Santoso"]
    assert all(r["verifiedAt"] for r in rows)


def test_csv_rows(app_ctx, checked_in_setup):
    event_id = checked_in_setup
    attendance.verify(event_id, "bob", _register(event_id, "bob"), "org")

    rows = list(attendance.attendance_csv_rows(event_id))
    assert len(rows) == 1
    assert rows[0].startswith("bob,Bob Santoso,")
    assert rows[0].rstrip("\n").endswith(",org")
