import io
import logging

from flask import Blueprint, Flask, Response, current_app, jsonify, request, send_file
from flask_login import current_user, login_required

import ai_proxy
import attendance
import identity
import ledger
import registrations
import reports
import rewards
from config import Config
from errors import Forbidden, InvalidInput, MissingFields, NotFound, Unauthorized, register_error_handlers
from extensions import configure_sqlite, db, login_manager
from models import Notification, User

log = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


# =====================
# LOGIN MANAGER
# =====================
@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, user_id)


@login_manager.request_loader
def load_user_from_request(req):
    user_id = req.headers.get(current_app.config["IDENTITY_HEADER"])
    if not user_id:
        return None
    return db.session.get(User, user_id)


@login_manager.unauthorized_handler
def unauthorized():
    raise Unauthorized("Unauthorized")


def require_admin():
    if current_user.role != "admin":
        raise Forbidden("Access Denied")


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def int_field(data, name, required=True):
    value = data.get(name)
    if value is None or value == "":
        if required:
            raise MissingFields(f"{name} is required")
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidInput(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be an integer")


def limit_arg(default):
    try:
        return max(1, min(int(request.args.get("limit", default)), 500))
    except ValueError:
        raise InvalidInput("limit must be an integer")


# =====================
# POINTS LEDGER
# =====================
@api.route("/points")
def get_points():
    user_id = request.args.get("userId")
    if not user_id:
        raise MissingFields("userId is required")
    return jsonify({"userId": user_id, "points": ledger.balance(user_id)})


def _ledger_response(user_id, tx):
    return jsonify({
        "userId": user_id,
        "points": ledger.balance(user_id),
        "transaction": tx.to_dict(),
    })


@api.route("/points/credit", methods=["POST"])
@login_required
def credit_points():
    require_admin()
    data = json_body()
    user_id = data.get("userId")
    if not user_id:
        raise MissingFields("userId is required")
    amount = int_field(data, "amount")
    tx = ledger.credit(user_id, amount, data.get("reason") or "Manual credit")
    return _ledger_response(user_id, tx)


@api.route("/points/debit", methods=["POST"])
@login_required
def debit_points():
    require_admin()
    data = json_body()
    user_id = data.get("userId")
    if not user_id:
        raise MissingFields("userId is required")
    amount = int_field(data, "amount")
    tx = ledger.debit(user_id, amount, reason=data.get("reason") or "Manual debit")
    return _ledger_response(user_id, tx)


@api.route("/transactions")
@login_required
def list_transactions():
    txs = ledger.list_transactions(current_user.id, limit_arg(20))
    return jsonify({"transactions": [t.to_dict() for t in txs]})


@api.route("/leaderboard")
def leaderboard():
    return jsonify([
        {"userId": u.id, "fullName": u.full_name, "points": u.points, "profileImage": u.profile_image}
        for u in ledger.leaderboard(limit_arg(100))
    ])


# =====================
# REWARDS
# =====================
@api.route("/rewards")
def list_rewards():
    return jsonify([r.to_dict() for r in rewards.catalog()])


@api.route("/rewards", methods=["POST"])
@login_required
def create_reward():
    require_admin()
    data = json_body()
    reward = rewards.create_reward(
        name=data.get("name"),
        points_required=int_field(data, "pointsRequired", required=False),
        stock=int_field(data, "stock", required=False),
        description=data.get("description"),
        image_url=data.get("imageUrl"),
    )
    return jsonify(reward.to_dict()), 201


@api.route("/rewards/<int:reward_id>/stock", methods=["PUT"])
@login_required
def restock_reward(reward_id):
    require_admin()
    reward = rewards.restock(reward_id, int_field(json_body(), "stock"))
    return jsonify(reward.to_dict())


@api.route("/rewards/redeem", methods=["POST"])
@login_required
def redeem_reward():
    reward_id = int_field(json_body(), "rewardId")
    user = rewards.redeem(current_user.id, reward_id)
    return jsonify({"success": True, "user": user.to_dict()})


# =====================
# EVENTS + REGISTRATION
# =====================
@api.route("/events")
def list_events():
    kind = request.args.get("type")
    if kind == "registered" and current_user.is_authenticated:
        return jsonify([
            {"registration": reg.to_dict(include_token=True), "event": event.to_dict()}
            for reg, event in registrations.user_registrations(current_user.id)
        ])
    if kind == "organized" and current_user.is_authenticated:
        return jsonify([e.to_dict() for e in registrations.organized_events(current_user.id)])
    return jsonify([e.to_dict() for e in registrations.published_events()])


@api.route("/events", methods=["POST"])
@login_required
def create_event():
    data = json_body()
    event = registrations.create_event(
        organizer_id=current_user.id,
        title=data.get("title"),
        location=data.get("location"),
        event_date=data.get("eventDate"),
        event_time=data.get("eventTime"),
        description=data.get("description"),
        capacity=int_field(data, "capacity", required=False),
        reward_info=data.get("rewardInfo"),
    )
    return jsonify(event.to_dict()), 201


@api.route("/events/<int:event_id>")
def event_detail(event_id):
    event = registrations.get_event(event_id)
    data = event.to_dict()
    data["registrationCount"] = registrations.registration_count(event_id)
    data["userRegistration"] = None
    if current_user.is_authenticated:
        reg = registrations.get_registration(event_id, current_user.id)
        if reg is not None:
            data["userRegistration"] = reg.to_dict(include_token=True)
    return jsonify(data)


@api.route("/events/<int:event_id>/status", methods=["PUT"])
@login_required
def update_event_status(event_id):
    event = registrations.get_event(event_id)
    if event.organizer_id != current_user.id and current_user.role != "admin":
        raise Forbidden("Access Denied")
    event = registrations.set_event_status(event_id, json_body().get("status"))
    return jsonify(event.to_dict())


@api.route("/events/<int:event_id>/register", methods=["POST"])
@login_required
def register_event(event_id):
    reg = registrations.register(event_id, current_user.id)
    return jsonify({"success": True, "registration": reg.to_dict(include_token=True)}), 201


@api.route("/events/<int:event_id>/register", methods=["DELETE"])
@login_required
def cancel_registration(event_id):
    registrations.cancel(event_id, current_user.id)
    return jsonify({"success": True})


@api.route("/events/<int:event_id>/registration/qr")
@login_required
def registration_qr(event_id):
    reg = registrations.get_registration(event_id, current_user.id)
    if reg is None:
        raise NotFound("Registration not found")
    png = registrations.qr_png(reg.qr_token)
    return send_file(io.BytesIO(png), mimetype="image/png", download_name=f"event{event_id}_qr.png")


# =====================
# ATTENDANCE
# =====================
@api.route("/events/<int:event_id>/verify", methods=["POST"])
def verify_attendance(event_id):
    verifier_id = current_user.id if current_user.is_authenticated else None
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    _, user_name = attendance.verify(event_id, data.get("userId"), data.get("qrData"), verifier_id)
    return jsonify({
        "success": True,
        "userName": user_name,
        "message": "Attendance verified successfully",
    })


@api.route("/events/<int:event_id>/verify")
def list_attendees(event_id):
    attendees = attendance.list_attendees(event_id)
    return jsonify({"eventId": event_id, "verifiedCount": len(attendees), "attendees": attendees})


@api.route("/events/<int:event_id>/attendance.csv")
@login_required
def download_attendance_report(event_id):
    event = registrations.get_event(event_id)
    if event.organizer_id != current_user.id and current_user.role != "admin":
        raise Forbidden("Access Denied")

    rows = list(attendance.attendance_csv_rows(event_id))

    def generate():
        yield "User ID,Name,Verified At,Verified By\n"
        yield from rows

    return Response(
        generate(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=attendance_event{event_id}.csv"}
    )


# =====================
# REPORTS + COLLECTION
# =====================
@api.route("/reports")
def list_reports():
    return jsonify([r.to_dict() for r in reports.recent_reports(limit_arg(10))])


@api.route("/reports", methods=["POST"])
@login_required
def create_report():
    data = json_body()
    report = reports.create_report(
        current_user.id,
        data.get("location"),
        data.get("wasteType"),
        data.get("amount"),
        image_url=data.get("imageUrl"),
        verification_result=data.get("verificationResult"),
    )
    return jsonify(report.to_dict()), 201


@api.route("/reports/<int:report_id>")
def report_detail(report_id):
    return jsonify(reports.get_report(report_id).to_dict())


@api.route("/tasks")
def list_tasks():
    return jsonify([r.to_dict() for r in reports.pending_tasks(limit_arg(20))])


@api.route("/reports/<int:report_id>/collect", methods=["POST"])
@login_required
def collect_report(report_id):
    data = request.get_json(silent=True) or {}
    report, collection, points = reports.collect(report_id, current_user.id, data.get("comment"))
    return jsonify({"report": report.to_dict(), "collection": collection.to_dict(), "points": points})


@api.route("/users/<user_id>/stats")
def user_stats(user_id):
    return jsonify(reports.user_stats(user_id))


# =====================
# NOTIFICATIONS
# =====================
@api.route("/notifications")
@login_required
def list_notifications():
    rows = Notification.query.filter_by(user_id=current_user.id, is_read=False) \
        .order_by(Notification.created_at.desc()).all()
    return jsonify([n.to_dict() for n in rows])


@api.route("/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_notification_read(notification_id):
    notification = db.session.get(Notification, notification_id)
    if notification is None or notification.user_id != current_user.id:
        raise NotFound("Notification not found")
    notification.is_read = True
    db.session.commit()
    return jsonify({"success": True})


# =====================
# WEBHOOKS + AI PROXY
# =====================
@api.route("/webhooks/user", methods=["POST"])
def user_webhook():
    evt = identity.verify_signature(current_app.config["USER_WEBHOOK_SECRET"], request.get_data(), request.headers)
    if not isinstance(evt, dict):
        raise InvalidInput("Invalid webhook payload")
    identity.handle_event(evt)
    return jsonify({"message": "Webhook received"})


@api.route("/gemini", methods=["POST"])
def gemini_proxy():
    body, status, content_type = ai_proxy.forward(request.get_json(silent=True) or {})
    return Response(body, status=status, content_type=content_type)


# =====================
# APP FACTORY
# =====================
def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    db.init_app(app)
    login_manager.init_app(app)
    register_error_handlers(app)
    app.register_blueprint(api)

    with app.app_context():
        configure_sqlite(db.engine)
        db.create_all()
        log.info("database ready: %s", db.engine.url.render_as_string(hide_password=True))

    @app.route("/")
    def root():
        return jsonify({"status": "ok", "service": "zerosampah"})

    return app


# =====================
# RUN
# =====================
if __name__ == "__main__":
    create_app().run(debug=True)
