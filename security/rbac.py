from functools import wraps
from flask import g, jsonify

from models.user import ROLE_ADMIN


def require_roles(*role_names: str):
    """@require_roles("OWNER"); platform admins always pass."""
    allowed = set(role_names) | {ROLE_ADMIN}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401
            if not allowed.intersection(user.role_names):
                return jsonify(error="Forbidden", required_roles=sorted(role_names)), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator
