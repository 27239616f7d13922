import json
from datetime import datetime, timezone

from flask_login import UserMixin

from extensions import db


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    return value.isoformat() if value else None


class User(db.Model, UserMixin):
    __tablename__ = "users"

    # External identity-provider ID
    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), unique=True)
    full_name = db.Column(db.String(200))
    profile_image = db.Column(db.String(500))
    role = db.Column(db.String(10), nullable=False, default="user")
    points = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint("points >= 0", name="ck_users_points_nonneg"),
    )

    @property
    def display_name(self):
        return self.full_name or "User"

    def to_dict(self):
        return {
            "userId": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "profileImage": self.profile_image,
            "points": self.points,
        }


class Report(db.Model):
    __tablename__ = "reports"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    location = db.Column(db.Text, nullable=False)
    waste_type = db.Column(db.String(100), nullable=False)
    amount = db.Column(db.String(100), nullable=False)
    image_url = db.Column(db.Text)
    verification_result = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default="pending")
    collector_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint("status IN ('pending','collected')", name="ck_reports_status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "location": self.location,
            "wasteType": self.waste_type,
            "amount": self.amount,
            "imageUrl": self.image_url,
            "verificationResult": json.loads(self.verification_result) if self.verification_result else None,
            "status": self.status,
            "collectorId": self.collector_id,
            "createdAt": isoformat(self.created_at),
        }


class CollectedWaste(db.Model):
    __tablename__ = "collected_wastes"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, unique=True)
    collector_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    collection_date = db.Column(db.DateTime(timezone=True), default=utcnow)
    comment = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "reportId": self.report_id,
            "collectorId": self.collector_id,
            "collectionDate": isoformat(self.collection_date),
            "comment": self.comment,
        }


class Reward(db.Model):
    __tablename__ = "rewards"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    points_required = db.Column(db.Integer, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    image_url = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.CheckConstraint("points_required >= 0", name="ck_rewards_points_nonneg"),
        db.CheckConstraint("stock >= 0", name="ck_rewards_stock_nonneg"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "pointsRequired": self.points_required,
            "stock": self.stock,
            "imageUrl": self.image_url,
        }


class Transaction(db.Model):
    """Ledger entry. Rows are only ever inserted."""

    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_id = db.Column(db.Integer, db.ForeignKey("rewards.id", ondelete="SET NULL"))
    amount = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(10), nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.CheckConstraint("type IN ('earned','redeemed')", name="ck_transactions_type"),
        db.CheckConstraint(
            "(type = 'earned' AND amount > 0) OR (type = 'redeemed' AND amount < 0)",
            name="ck_transactions_sign",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "rewardId": self.reward_id,
            "amount": self.amount,
            "type": self.type,
            "description": self.description,
            "createdAt": isoformat(self.created_at),
        }


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    organizer_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    location = db.Column(db.Text, nullable=False)
    event_date = db.Column(db.DateTime(timezone=True), nullable=False)
    event_time = db.Column(db.String(20), nullable=False)
    capacity = db.Column(db.Integer)
    # Kept in step with event_registrations by register/cancel; guards capacity
    registered_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="published")
    reward_info = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organizer = db.relationship("User")

    __table_args__ = (
        db.CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_events_capacity_nonneg"),
        db.CheckConstraint("registered_count >= 0", name="ck_events_registered_count_nonneg"),
        db.CheckConstraint("capacity IS NULL OR registered_count <= capacity", name="ck_events_within_capacity"),
        db.CheckConstraint("status IN ('published','cancelled','completed')", name="ck_events_status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organizerId": self.organizer_id,
            "organizerName": self.organizer.display_name if self.organizer else None,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "eventDate": isoformat(self.event_date),
            "eventTime": self.event_time,
            "capacity": self.capacity,
            "status": self.status,
            "rewardInfo": self.reward_info,
        }


class EventRegistration(db.Model):
    __tablename__ = "event_registrations"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Bearer secret shown to the registrant as a QR code
    qr_token = db.Column(db.String(128), nullable=False, unique=True)
    registered_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("event_id", "user_id", name="uq_event_registrations_event_user"),
    )

    def to_dict(self, include_token=False):
        data = {
            "id": self.id,
            "eventId": self.event_id,
            "userId": self.user_id,
            "registeredAt": isoformat(self.registered_at),
        }
        if include_token:
            data["qrToken"] = self.qr_token
        return data


class EventAttendance(db.Model):
    __tablename__ = "event_attendance"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # No ON DELETE: a registration consumed by check-in cannot be removed
    registration_id = db.Column(
        db.Integer, db.ForeignKey("event_registrations.id"), nullable=False, unique=True
    )
    verified_by = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="SET NULL"))
    verified_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("event_id", "user_id", name="uq_event_attendance_event_user"),
    )


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False, default="info")
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "message": self.message,
            "type": self.type,
            "isRead": self.is_read,
            "createdAt": isoformat(self.created_at),
        }
