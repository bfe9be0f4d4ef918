# rentledger/errors.py
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 400
    code = "ledger_error"

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.code, "message": self.message}


class ValidationError(LedgerError):
    code = "validation_error"


class NotFoundError(LedgerError):
    status_code = 404
    code = "not_found"


class UnknownProviderError(NotFoundError):
    code = "unknown_provider"


class GatewayError(LedgerError):
    """The payment provider rejected or could not take an initiate request."""

    status_code = 502
    code = "gateway_error"


class TransientPollError(LedgerError):
    """A single status lookup failed; the next poll may succeed."""

    status_code = 503
    code = "transient_poll_error"


class TimeoutExceeded(LedgerError):
    status_code = 504
    code = "timeout_exceeded"


class PaymentInProgressError(LedgerError):
    status_code = 409
    code = "payment_in_progress"


class WebhookAuthError(LedgerError):
    status_code = 401
    code = "webhook_unauthorized"


def register_error_handlers(app):
    @app.errorhandler(LedgerError)
    def ledger_error(e):
        if e.status_code >= 500:
            logger.warning("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify(error="bad_request", message=getattr(e, "description", "Bad Request")), 400

    @app.errorhandler(401)
    def unauthorized(e): return jsonify(error="unauthorized"), 401

    @app.errorhandler(403)
    def forbidden(e): return jsonify(error="forbidden"), 403

    @app.errorhandler(404)
    def not_found(e): return jsonify(error="not_found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e): return jsonify(error="method_not_allowed"), 405

    @app.errorhandler(Exception)
    def server_error(e):
        if isinstance(e, HTTPException):
            return jsonify(error=e.name.lower().replace(" ", "_")), e.code
        logger.exception("Unhandled exception: %s", e)
        return jsonify(error="server_error"), 500
