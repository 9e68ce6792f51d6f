from functools import wraps
from flask import g, jsonify, request

from models import db
from models.user import User
from security.tokens import bearer_token, decode_token

def load_current_user():
    g.user = None
    g.token_claims = None

    token = bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return
    claims = decode_token(token)
    if not claims:
        return

    try:
        user = db.session.get(User, int(claims.get("sub")))
    except (TypeError, ValueError):
        return
    if user is None or not user.is_active:
        return
    g.user = user
    g.token_claims = claims

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
