"""
QR proof-of-presence check-in.

A verifier scans the registrant's QR code and submits the token it
carries. Attendance is recorded at most once per (event, user); the unique
constraint on ``event_attendance`` is what guarantees it, which also bounds
the attendance points credit to once.
"""

import hmac
import logging

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

import ledger
from errors import AlreadyVerified, MissingFields, NotRegistered, TokenMismatch, Unauthorized
from extensions import db, locked
from models import Event, EventAttendance, EventRegistration, User, isoformat, utcnow

log = logging.getLogger(__name__)


def _registration_id(event_id, user_id):
    return db.session.scalar(
        select(EventRegistration.id).where(
            EventRegistration.event_id == event_id,
            EventRegistration.user_id == user_id,
        )
    )


def verify(event_id, user_id, scanned_token, verifier_id):
    """Check a registrant in. Returns ``(attendance, user_name)``."""
    if not verifier_id:
        raise Unauthorized("Unauthorized")
    if not user_id or not scanned_token:
        raise MissingFields("Missing required fields")

    try:
        registration = db.session.scalars(
            locked(select(EventRegistration).where(
                EventRegistration.event_id == event_id,
                EventRegistration.user_id == user_id,
            ))
        ).first()
        if registration is None:
            raise NotRegistered("Registration not found", status_code=400)

        if not hmac.compare_digest(registration.qr_token.encode(), str(scanned_token).encode()):
            raise TokenMismatch("Invalid QR code")

        existing = db.session.scalars(
            select(EventAttendance.id).where(
                EventAttendance.event_id == event_id,
                EventAttendance.user_id == user_id,
            )
        ).first()
        if existing is not None:
            raise AlreadyVerified("Already verified")

        attendance = EventAttendance(
            event_id=event_id,
            user_id=user_id,
            registration_id=registration.id,
            verified_by=verifier_id,
            verified_at=utcnow(),
        )
        db.session.add(attendance)
        try:
            db.session.flush()
        except IntegrityError:
            # a concurrent scan or a concurrent cancel got there first
            db.session.rollback()
            if _registration_id(event_id, user_id) is None:
                raise NotRegistered("Registration not found", status_code=400)
            raise AlreadyVerified("Already verified")

        points = current_app.config["ATTENDANCE_POINTS"]
        if points > 0:
            event = db.session.get(Event, event_id)
            ledger.credit(user_id, points, f"Attended event: {event.title}", commit=False)

        db.session.commit()
    except AlreadyVerified:
        db.session.rollback()
        log.info("attendance for %s at event %s already verified", user_id, event_id)
        raise
    except Exception:
        db.session.rollback()
        raise

    user = db.session.get(User, user_id)
    log.info("attendance verified: user %s at event %s by %s", user_id, event_id, verifier_id)
    return attendance, user.display_name if user else "User"


def _attendee_rows(event_id):
    return db.session.execute(
        select(EventAttendance, User)
        .outerjoin(User, EventAttendance.user_id == User.id)
        .where(EventAttendance.event_id == event_id)
        .order_by(EventAttendance.verified_at.asc(), EventAttendance.id.asc())
    ).all()


def list_attendees(event_id):
    return [
        {
            "userId": attendance.user_id,
            "userName": user.full_name if user else None,
            "verifiedAt": isoformat(attendance.verified_at),
        }
        for attendance, user in _attendee_rows(event_id)
    ]


def attendance_csv_rows(event_id):
    for attendance, user in _attendee_rows(event_id):
        name = (user.full_name if user else "") or ""
        yield f"{attendance.user_id},{name.replace(',', ' ')},{isoformat(attendance.verified_at)},{attendance.verified_by or ''}\n"
