# ------- storefront/utils/decorators.py -------
# Identity comes from a JWT issued elsewhere; the "role" claim carries the
# caller's role ("user" when absent).
from functools import wraps
from flask import jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from ..utils.api import api_error


def current_user_id(optional: bool = True):
    """User id from the bearer token, or None for guests when ``optional``."""
    verify_jwt_in_request(optional=optional)
    uid = get_jwt_identity()
    return str(uid) if uid is not None else None


def current_role() -> str:
    return (get_jwt() or {}).get("role") or "user"


def is_admin() -> bool:
    return current_role() == "admin"


def role_required(*roles, message: str | None = None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if not get_jwt_identity():
                return jsonify(api_error("Unauthorized")), 401
            if current_role() not in roles:
                return jsonify(api_error(message or "Forbidden")), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator
