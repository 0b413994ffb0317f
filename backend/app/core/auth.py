"""JWT creation/verification for access and refresh tokens, refresh token hashing."""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import settings

REFRESH_TOKEN_TYPE = "refresh"
BEARER_PREFIX = "Bearer "


class TokenError(Exception):
    """Base class for token verification failures."""


class InvalidTokenError(TokenError):
    """Bad signature, malformed token or missing claims."""


class ExpiredTokenError(TokenError):
    """Signature is valid but the token is past its expiry."""


def _encode(payload: dict[str, Any], secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    claims = {**payload, "iat": now, "exp": now + expires_delta}
    result = jwt.encode(claims, secret, algorithm=settings.jwt_algorithm)
    return result if isinstance(result, str) else result.decode("utf-8")


def _decode(token: str, secret: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as e:
        raise ExpiredTokenError("Token has expired") from e
    except JWTError as e:
        raise InvalidTokenError("Invalid or malformed token") from e


def create_access_token(user_id: str, email: str) -> str:
    """Short-lived access token carrying only the user id and email."""
    return _encode(
        {"sub": str(user_id), "email": email},
        settings.jwt_access_secret,
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(user_id: str, token_id: str) -> str:
    """Long-lived refresh token; token_id is the primary key of its database record."""
    return _encode(
        {"sub": str(user_id), "token_id": token_id, "type": REFRESH_TOKEN_TYPE},
        settings.jwt_refresh_secret,
        timedelta(days=settings.refresh_token_expire_days),
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify an access token. Returns {"sub", "email"}; raises InvalidTokenError / ExpiredTokenError."""
    payload = _decode(token, settings.jwt_access_secret)
    sub = payload.get("sub")
    email = payload.get("email")
    if not sub or not email:
        raise InvalidTokenError("Invalid access token payload")
    return {"sub": sub, "email": email}


def decode_refresh_token(token: str) -> dict[str, Any]:
    """Verify a refresh token. Returns {"sub", "token_id", "type"}; raises InvalidTokenError / ExpiredTokenError."""
    payload = _decode(token, settings.jwt_refresh_secret)
    sub = payload.get("sub")
    token_id = payload.get("token_id")
    if not sub or not token_id or payload.get("type") != REFRESH_TOKEN_TYPE:
        raise InvalidTokenError("Invalid refresh token payload")
    return {"sub": sub, "token_id": token_id, "type": REFRESH_TOKEN_TYPE}


def extract_bearer_token(auth_header: str | None) -> str | None:
    """Token from an Authorization header; the "Bearer " prefix is case-sensitive."""
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    return auth_header[len(BEARER_PREFIX):].strip() or None


def _refresh_token_digest(token: str) -> bytes:
    # bcrypt reads at most 72 bytes, a signed JWT is longer
    return hashlib.sha256(token.encode("utf-8")).hexdigest().encode("ascii")


def hash_refresh_token(token: str) -> str:
    """Salted bcrypt hash of a refresh token for storage."""
    salt = bcrypt.gensalt(rounds=settings.refresh_token_hash_rounds)
    return bcrypt.hashpw(_refresh_token_digest(token), salt).decode("utf-8")


def verify_refresh_token_hash(token: str, token_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_refresh_token_digest(token), token_hash.encode("utf-8"))
    except ValueError:
        return False
