"""
Mirror of the identity provider's users.

The provider posts ``user.created`` / ``user.updated`` / ``user.deleted``
events signed with Svix; :func:`verify_signature` checks the ``svix-id``,
``svix-timestamp`` and ``svix-signature`` headers against a ``whsec_``
secret before anything is applied.
"""

import logging

from sqlalchemy import delete, select, update
from svix.webhooks import Webhook, WebhookVerificationError

from errors import InvalidInput
from extensions import db
from models import Event, EventRegistration, User

log = logging.getLogger(__name__)


def verify_signature(secret, payload, headers):
    """Return the decoded event once its signature checks out."""
    if not secret:
        raise InvalidInput("Webhook secret not configured", status_code=500, reason="webhook_unconfigured")

    try:
        return Webhook(secret).verify(payload, dict(headers))
    except WebhookVerificationError:
        raise InvalidInput("Invalid Webhook Signature", reason="invalid_signature")
    except ValueError:
        raise InvalidInput("Invalid webhook payload")


def _full_name(data):
    name = data.get("full_name") or f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip()
    return name or "Anonymous User"


def _primary_email(data):
    emails = data.get("email_addresses") or []
    return emails[0].get("email_address") if emails else None


def user_exists(user_id):
    return bool(user_id) and db.session.get(User, user_id) is not None


def upsert_user(data):
    user = db.session.get(User, data["id"])
    if user is None:
        user = User(id=data["id"], points=0)
        db.session.add(user)
    user.email = _primary_email(data)
    user.full_name = _full_name(data)
    user.profile_image = data.get("image_url") or None
    role = (data.get("public_metadata") or {}).get("role")
    if role in ("user", "admin"):
        user.role = role
    return user


def delete_user(user_id):
    # Registrations go with the user through ON DELETE CASCADE; give their seats back first
    db.session.execute(
        update(Event)
        .where(Event.id.in_(select(EventRegistration.event_id).where(EventRegistration.user_id == user_id)))
        .values(registered_count=Event.registered_count - 1)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(delete(User).where(User.id == user_id))


def handle_event(evt):
    """Apply one lifecycle event. Replaying an event is harmless."""
    kind = evt.get("type")
    data = evt.get("data") or {}
    if not data.get("id"):
        raise InvalidInput("Webhook payload missing user id")

    try:
        if kind in ("user.created", "user.updated"):
            upsert_user(data)
        elif kind == "user.deleted":
            delete_user(data["id"])
        else:
            log.info("ignoring identity event %s", kind)
            return
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("identity event %s applied for %s", kind, data["id"])
