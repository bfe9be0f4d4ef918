from functools import wraps
from flask import jsonify
from flask_jwt_extended import verify_jwt_in_request, get_jwt, get_jwt_identity

ADMIN_ROLES = ("super_admin", "admin")


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        claims = get_jwt()
        if claims.get("role") not in ADMIN_ROLES:
            return jsonify({"error": "forbidden", "message": "Admin access required"}), 403
        return fn(*args, **kwargs)
    return wrapper


def current_actor():
    """Who to credit for a manual ledger change: the JWT subject."""
    identity = get_jwt_identity()
    return str(identity) if identity is not None else None
