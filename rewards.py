"""Reward catalog and redemption."""

import logging

from sqlalchemy import select, update

import identity
import ledger
from errors import InsufficientPoints, InvalidInput, MissingFields, NotFound, OutOfStock
from extensions import db, locked
from models import Notification, Reward, User

log = logging.getLogger(__name__)


def catalog():
    return db.session.scalars(
        select(Reward).order_by(Reward.points_required.desc(), Reward.id)
    ).all()


def _non_negative_int(value, field):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInput(f"{field} must be a non-negative integer")
    return value


def create_reward(name, points_required, stock, description=None, image_url=None):
    if not name or points_required is None or stock is None:
        raise MissingFields("Missing required fields: name, pointsRequired, stock")
    reward = Reward(
        name=name,
        description=description or "",
        points_required=_non_negative_int(points_required, "pointsRequired"),
        stock=_non_negative_int(stock, "stock"),
        image_url=image_url,
    )
    db.session.add(reward)
    db.session.commit()
    log.info("reward %s created (%s points, stock %s)", reward.id, reward.points_required, reward.stock)
    return reward


def restock(reward_id, stock):
    reward = db.session.get(Reward, reward_id)
    if reward is None:
        raise NotFound("Reward not found")
    reward.stock = _non_negative_int(stock, "stock")
    db.session.commit()
    return reward


def redeem(user_id, reward_id):
    """Exchange points for one unit of a reward.

    Stock and points both move or neither does. Returns the user with the
    new balance.
    """
    try:
        if not identity.user_exists(user_id):
            raise NotFound("User not found")
        user = db.session.get(User, user_id)

        reward = db.session.scalars(locked(select(Reward).where(Reward.id == reward_id))).first()
        if reward is None:
            raise NotFound("Reward not found")

        if reward.stock <= 0:
            raise OutOfStock("Reward out of stock")
        if user.points < reward.points_required:
            raise InsufficientPoints("Insufficient points")

        # stock re-checked atomically
        result = db.session.execute(
            update(Reward)
            .where(Reward.id == reward.id, Reward.stock > 0)
            .values(stock=Reward.stock - 1)
        )
        if result.rowcount == 0:
            raise OutOfStock("Reward out of stock")

        if reward.points_required > 0:
            ledger.debit(
                user_id,
                reward.points_required,
                reward_id=reward.id,
                reason=f"Redeemed: {reward.name}",
                commit=False,
            )

        db.session.add(Notification(
            user_id=user_id,
            message=f"You redeemed {reward.name} for {reward.points_required} points.",
            type="reward",
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("user %s redeemed reward %s", user_id, reward_id)
    db.session.refresh(user)
    return user
