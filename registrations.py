"""
Event registration and capacity tracking.

A registration carries ``qr_token``, an unguessable bearer secret the
registrant shows as a QR code at the event. The (event, user) pair and the
token are both unique in the database, and a seat is taken by a conditional
update of ``Event.registered_count``. The pre-checks here only exist to give
a friendly error before a constraint or that update would refuse the write.
"""

import io
import logging
import secrets
from datetime import datetime

import qrcode
from flask import current_app
from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError

import identity
from errors import (
    AlreadyAttended,
    AlreadyRegistered,
    CapacityExceeded,
    EventClosed,
    InvalidInput,
    MissingFields,
    NotFound,
    NotRegistered,
)
from extensions import db, locked
from models import Event, EventAttendance, EventRegistration

log = logging.getLogger(__name__)

EVENT_STATUSES = ("published", "cancelled", "completed")


def new_qr_token():
    return secrets.token_urlsafe(current_app.config["QR_TOKEN_BYTES"])


def qr_png(token):
    img = qrcode.make(token)
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def create_event(organizer_id, title, location, event_date, event_time,
                 description=None, capacity=None, reward_info=None):
    if not title or not location or not event_date or not event_time:
        raise MissingFields("Missing required fields: title, location, eventDate, eventTime")
    if isinstance(event_date, str):
        try:
            event_date = datetime.fromisoformat(event_date)
        except ValueError:
            raise InvalidInput("eventDate must be an ISO-8601 date")
    if capacity is not None and (isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1):
        raise InvalidInput("capacity must be a positive integer")

    event = Event(
        organizer_id=organizer_id,
        title=title,
        description=description or "",
        location=location,
        event_date=event_date,
        event_time=event_time,
        capacity=capacity,
        reward_info=reward_info,
    )
    db.session.add(event)
    db.session.commit()
    log.info("event %s created by %s (capacity %s)", event.id, organizer_id, capacity)
    return event


def get_event(event_id):
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    return event


def published_events():
    return db.session.scalars(
        select(Event).where(Event.status == "published").order_by(Event.event_date.desc())
    ).all()


def organized_events(user_id):
    return db.session.scalars(
        select(Event).where(Event.organizer_id == user_id).order_by(Event.event_date.desc())
    ).all()


def set_event_status(event_id, status):
    if status not in EVENT_STATUSES:
        raise InvalidInput(f"status must be one of {', '.join(EVENT_STATUSES)}")
    event = get_event(event_id)
    event.status = status
    db.session.commit()
    return event


def registration_count(event_id):
    return db.session.scalar(
        select(func.count(EventRegistration.id)).where(EventRegistration.event_id == event_id)
    )


def get_registration(event_id, user_id):
    return db.session.scalars(
        select(EventRegistration).where(
            EventRegistration.event_id == event_id,
            EventRegistration.user_id == user_id,
        )
    ).first()


def user_registrations(user_id):
    return db.session.execute(
        select(EventRegistration, Event)
        .join(Event, EventRegistration.event_id == Event.id)
        .where(EventRegistration.user_id == user_id)
        .order_by(Event.event_date.desc())
    ).all()


def register(event_id, user_id):
    try:
        event = db.session.scalars(locked(select(Event).where(Event.id == event_id))).first()
        if event is None:
            raise NotFound("Event not found")
        if event.status != "published":
            raise EventClosed("Event is not open for registration")
        if not identity.user_exists(user_id):
            raise NotFound("User not found")

        if get_registration(event_id, user_id) is not None:
            raise AlreadyRegistered("Already registered")

        # Take a seat; the WHERE clause re-checks capacity at write time
        claimed = db.session.execute(
            update(Event)
            .where(
                Event.id == event_id,
                or_(Event.capacity.is_(None), Event.registered_count < Event.capacity),
            )
            .values(registered_count=Event.registered_count + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            raise CapacityExceeded("Event is full")

        registration = EventRegistration(event_id=event_id, user_id=user_id, qr_token=new_qr_token())
        db.session.add(registration)
        try:
            db.session.flush()
        except IntegrityError:
            raise AlreadyRegistered("Already registered")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("user %s registered for event %s", user_id, event_id)
    return registration


def cancel(event_id, user_id):
    try:
        registration = db.session.scalars(
            locked(select(EventRegistration).where(
                EventRegistration.event_id == event_id,
                EventRegistration.user_id == user_id,
            ))
        ).first()
        if registration is None:
            raise NotRegistered("Not registered for this event")

        attended = exists().where(EventAttendance.registration_id == registration.id)
        try:
            removed = db.session.execute(
                delete(EventRegistration)
                .where(EventRegistration.id == registration.id, ~attended)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            raise AlreadyAttended("Attendance already verified; registration cannot be cancelled")
        if removed.rowcount == 0:
            if get_registration(event_id, user_id) is None:
                raise NotRegistered("Not registered for this event")
            raise AlreadyAttended("Attendance already verified; registration cannot be cancelled")

        db.session.execute(
            update(Event)
            .where(Event.id == event_id, Event.registered_count > 0)
            .values(registered_count=Event.registered_count - 1)
            .execution_options(synchronize_session=False)
        )
        db.session.expunge(registration)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("user %s cancelled registration for event %s", user_id, event_id)
