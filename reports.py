"""Waste reports and their one-time collection."""

import json
import logging

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

import identity
import ledger
from errors import AlreadyCollected, MissingFields, NotFound
from extensions import db, locked
from models import (
    CollectedWaste,
    Event,
    EventRegistration,
    Notification,
    Report,
    Transaction,
    User,
    utcnow,
)

log = logging.getLogger(__name__)


def create_report(user_id, location, waste_type, amount, image_url=None, verification_result=None):
    if not location or not waste_type or not amount:
        raise MissingFields("Missing required fields: location, wasteType, amount")
    if not identity.user_exists(user_id):
        raise NotFound("User not found")

    try:
        report = Report(
            user_id=user_id,
            location=location,
            waste_type=waste_type,
            amount=str(amount),
            image_url=image_url or None,
            verification_result=json.dumps(verification_result) if verification_result else None,
            status="pending",
        )
        db.session.add(report)
        db.session.flush()

        points = current_app.config["REPORT_POINTS"]
        if points > 0:
            ledger.credit(user_id, points, f"Points earned for reporting waste (report #{report.id})", commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("report %s created by %s", report.id, user_id)
    return report


def get_report(report_id):
    report = db.session.get(Report, report_id)
    if report is None:
        raise NotFound("Report not found")
    return report


def collect(report_id, collector_id, comment=None):
    """Mark a pending report collected and credit the collector.

    Returns ``(report, collection, points_awarded)``.
    """
    try:
        report = db.session.scalars(locked(select(Report).where(Report.id == report_id))).first()
        if report is None:
            raise NotFound("Report not found")
        if report.status == "collected":
            raise AlreadyCollected("Report already collected")

        result = db.session.execute(
            update(Report)
            .where(Report.id == report_id, Report.status == "pending")
            .values(status="collected", collector_id=collector_id, updated_at=utcnow())
        )
        if result.rowcount == 0:
            raise AlreadyCollected("Report already collected")

        collection = CollectedWaste(report_id=report_id, collector_id=collector_id, comment=comment)
        db.session.add(collection)
        try:
            db.session.flush()
        except IntegrityError:
            raise AlreadyCollected("Report already collected")

        points = current_app.config["COLLECTION_POINTS"]
        if points > 0:
            ledger.credit(collector_id, points, "Points earned for collecting waste", commit=False)
            db.session.add(Notification(
                user_id=collector_id,
                message=f"You earned {points} points for successfully collecting waste at {report.location}!",
                type="reward",
            ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("report %s collected by %s", report_id, collector_id)
    db.session.refresh(report)
    return report, collection, points


def pending_tasks(limit=20):
    return db.session.scalars(
        select(Report)
        .where(Report.status == "pending", Report.collector_id.is_(None))
        .order_by(Report.created_at.desc(), Report.id.desc())
        .limit(limit)
    ).all()


def recent_reports(limit=10):
    return db.session.scalars(
        select(Report).order_by(Report.created_at.desc(), Report.id.desc()).limit(limit)
    ).all()


def _count(stmt):
    return db.session.scalar(stmt) or 0


def user_stats(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")

    earned = _count(
        select(func.sum(Transaction.amount)).where(Transaction.user_id == user_id, Transaction.type == ledger.EARNED)
    )
    redeemed = _count(
        select(func.sum(Transaction.amount)).where(Transaction.user_id == user_id, Transaction.type == ledger.REDEEMED)
    )
    return {
        "user": user.to_dict(),
        "stats": {
            "reportsSubmitted": _count(select(func.count(Report.id)).where(Report.user_id == user_id)),
            "wastesCollected": _count(
                select(func.count(CollectedWaste.id)).where(CollectedWaste.collector_id == user_id)
            ),
            "pointsEarned": int(earned),
            "pointsRedeemed": -int(redeemed),
            "currentPoints": user.points,
            "eventsOrganized": _count(select(func.count(Event.id)).where(Event.organizer_id == user_id)),
            "eventsJoined": _count(
                select(func.count(EventRegistration.id)).where(EventRegistration.user_id == user_id)
            ),
        },
    }
