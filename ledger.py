"""
Points ledger.

Every change to ``User.points`` goes through :func:`credit` or :func:`debit`,
which write the balance and an append-only :class:`Transaction` row in one
database transaction. The balance update is a single conditional UPDATE, so
two concurrent debits can never both pass the ``points >= amount`` check.

Composite operations (redemption, collection, attendance) pass
``commit=False`` and commit the whole unit themselves.
"""

import logging

from sqlalchemy import func, select, update

from errors import InsufficientPoints, InvalidInput, NotFound
from extensions import db
from models import Transaction, User, utcnow

log = logging.getLogger(__name__)

EARNED = "earned"
REDEEMED = "redeemed"


def _check_amount(amount):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidInput("amount must be a positive integer")


def _finish(commit):
    if commit:
        db.session.commit()
    else:
        db.session.flush()


def credit(user_id, amount, reason, commit=True):
    """Add ``amount`` points to the user and log an ``earned`` entry."""
    try:
        _check_amount(amount)
        result = db.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(points=User.points + amount, updated_at=utcnow())
        )
        if result.rowcount == 0:
            raise NotFound("User not found")

        tx = Transaction(user_id=user_id, amount=amount, type=EARNED, description=reason)
        db.session.add(tx)
        _finish(commit)
    except Exception:
        if commit:
            db.session.rollback()
        raise

    log.info("credited %s points to %s (%s)", amount, user_id, reason)
    return tx


def debit(user_id, amount, reward_id=None, reason="redeemed", commit=True):
    """Remove ``amount`` points from the user and log a ``redeemed`` entry.

    Raises InsufficientPoints without touching anything when the balance is
    too low at the moment of the write.
    """
    try:
        _check_amount(amount)
        result = db.session.execute(
            update(User)
            .where(User.id == user_id, User.points >= amount)
            .values(points=User.points - amount, updated_at=utcnow())
        )
        if result.rowcount == 0:
            if db.session.get(User, user_id) is None:
                raise NotFound("User not found")
            raise InsufficientPoints("Insufficient points")

        tx = Transaction(
            user_id=user_id,
            reward_id=reward_id,
            amount=-amount,
            type=REDEEMED,
            description=reason,
        )
        db.session.add(tx)
        _finish(commit)
    except Exception:
        if commit:
            db.session.rollback()
        raise

    log.info("debited %s points from %s (%s)", amount, user_id, reason)
    return tx


def balance(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user.points


def replay_balance(user_id):
    """Balance rebuilt from the transaction log alone."""
    total = db.session.scalar(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(Transaction.user_id == user_id)
    )
    return int(total)


def list_transactions(user_id, limit=20):
    return db.session.scalars(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
    ).all()


def leaderboard(limit=100):
    return db.session.scalars(
        select(User).order_by(User.points.desc(), User.id).limit(limit)
    ).all()
