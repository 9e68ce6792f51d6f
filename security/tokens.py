from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app


def issue_token(user) -> str:
    """Signed access token carrying the user id and role names."""
    now = datetime.now(timezone.utc)
    lifetime = current_app.config.get("JWT_EXPIRY_SECONDS", 8 * 60 * 60)
    payload = {
        "sub": str(user.id),
        "roles": user.role_names,
        "iat": now,
        "exp": now + timedelta(seconds=lifetime),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def decode_token(token: str):
    """Claims dict, or None when the token is invalid or expired."""
    try:
        return jwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.PyJWTError:
        return None


def bearer_token(header_value: str):
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
