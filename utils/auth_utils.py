import logging
from functools import wraps
from flask import jsonify, session

logger = logging.getLogger(__name__)

TEACHER = "Teacher"
HEAD_TEACHER = "Head Teacher"
ADMIN = "Admin"
ROLES = (TEACHER, HEAD_TEACHER, ADMIN)


def current_role():
    """Role stored by the auth service in the session, or None."""
    role = session.get("role")
    return role if role in ROLES else None


def login_required(f):
    """Decorator to ensure a valid session exists before accessing a route.

    Sessions are established by the external auth service; API callers without
    one get a JSON 401 instead of a redirect.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if "user_id" not in session:
            return jsonify({"error": "Not authenticated"}), 401
        return f(*args, **kwargs)

    return decorated_function


def role_required(*roles):
    """Restrict a route to the given roles. Apply below @login_required."""

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = current_role()
            if role not in roles:
                logger.warning(
                    f"Access denied for user {session.get('user_id')} ({role}) to {f.__name__}"
                )
                return jsonify({"error": "access_denied"}), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator
