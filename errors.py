import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from extensions import db

log = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base for every failure a caller can tell apart by ``reason``."""

    status_code = 500
    reason = "internal"

    def __init__(self, message, status_code=None, reason=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if reason is not None:
            self.reason = reason


class NotFound(ServiceError):
    status_code = 404
    reason = "not_found"


class NotRegistered(NotFound):
    reason = "not_registered"


class Unauthorized(ServiceError):
    status_code = 401
    reason = "unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    reason = "forbidden"


class Conflict(ServiceError):
    status_code = 409
    reason = "conflict"


class AlreadyRegistered(Conflict):
    reason = "already_registered"


class AlreadyVerified(Conflict):
    reason = "already_verified"


class AlreadyAttended(Conflict):
    reason = "already_attended"


class AlreadyCollected(Conflict):
    reason = "already_collected"


class InvalidInput(ServiceError):
    status_code = 400
    reason = "invalid_input"


class MissingFields(InvalidInput):
    reason = "missing_fields"


class TokenMismatch(InvalidInput):
    reason = "token_mismatch"


class EventClosed(InvalidInput):
    reason = "event_closed"


class ResourceExhausted(ServiceError):
    status_code = 400
    reason = "resource_exhausted"


class InsufficientPoints(ResourceExhausted):
    reason = "insufficient_points"


class OutOfStock(ResourceExhausted):
    reason = "out_of_stock"


class CapacityExceeded(ResourceExhausted):
    reason = "capacity_exceeded"


def error_body(message, reason):
    return {"error": message, "reason": reason}


def register_error_handlers(app):
    @app.errorhandler(ServiceError)
    def handle_service_error(e):
        if e.status_code >= 500:
            log.error("%s: %s", e.reason, e.message)
        return jsonify(error_body(e.message, e.reason)), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        reason = (e.name or "error").lower().replace(" ", "_")
        return jsonify(error_body(e.description, reason)), e.code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        log.exception("Datastore failure")
        return jsonify(error_body("Internal server error", "internal")), 500

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        log.exception("Unhandled server error")
        return jsonify(error_body("Internal server error", "internal")), 500
