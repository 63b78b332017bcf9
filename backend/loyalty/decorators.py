# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import User
from .services import auth_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user to the User the token was issued to. The role used by
    later checks is the user's current role, not the one baked into the token.

    Returns 401 if:
    - No Authorization header
    - Invalid or expired token
    - The token's user no longer exists
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        claims = auth_service.verify_token(token)
        if not claims:
            return jsonify({"error": "Invalid or expired token"}), 401

        user = db.session.get(User, claims.get("id"))
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(minimum: str):
    """
    Require the authenticated user's role to be at or above `minimum` on the
    ladder regular < cashier < manager < superuser.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not g.current_user.has_role(minimum):
                return jsonify({"error": "Permission denied"}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
