"""Password hashing (bcrypt) and JWT issuing/verification (python-jose)."""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from .config import settings
from .errors import AuthenticationFailed

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed hash or password over bcrypt's 72 byte limit
        return False


def new_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode(claims: dict[str, Any], expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = int(now.timestamp())
    payload["exp"] = int((now + expires_delta).timestamp())
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_access_token(*, member_id: int, family_id: int, session_id: int, expires_delta: timedelta) -> str:
    return _encode(
        {"sub": str(member_id), "fam": family_id, "sid": session_id, "type": ACCESS},
        expires_delta,
    )


def create_refresh_token(*, member_id: int, session_id: int, jti: str, expires_delta: timedelta) -> str:
    return _encode(
        {"sub": str(member_id), "sid": session_id, "jti": jti, "type": REFRESH},
        expires_delta,
    )


def decode_token(token: str, expected_type: str) -> dict[str, Any]:
    """Verify signature, expiry and token type; return the claims."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationFailed("Token has expired")
    except JWTError:
        raise AuthenticationFailed("Invalid token")
    if claims.get("type") != expected_type:
        raise AuthenticationFailed("Invalid token type")
    if not str(claims.get("sub") or "").isdigit() or not isinstance(claims.get("sid"), int):
        raise AuthenticationFailed("Invalid token")
    return claims
