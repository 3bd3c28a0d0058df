# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .actors import Actor
from .extensions import db
from .models import User
from .permissions import role_has_permission, validate_permission_code


def _is_authenticated() -> bool:
    return hasattr(g, 'actor') and hasattr(g, 'current_user')


def require_actor(f):
    """
    Resolve the acting user forwarded by the auth gateway.

    Sets the following Flask g attributes:
    - g.current_user: the User row
    - g.actor:        Actor(user_id, role, rider_id) handed to services

    Returns 401 if the header is missing, malformed, unknown or the user is
    deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        header = current_app.config.get("ACTOR_HEADER", "X-Actor-Id")
        raw = request.headers.get(header)
        if not raw:
            return jsonify({"error": "Authentication required"}), 401

        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": f"Invalid {header} header"}), 401

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        g.actor = Actor.from_user(user)

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission from the static role map."""
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission code: {permission_code}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_actor was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not role_has_permission(g.actor.role, permission_code):
                current_app.logger.warning(
                    "Permission %s denied for user=%s role=%s on %s",
                    permission_code, g.actor.user_id, g.actor.role, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "code": "ACCESS_DENIED",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
