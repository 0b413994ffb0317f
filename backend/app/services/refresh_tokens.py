"""
Refresh token store: persisted, hashed, revocable refresh tokens.

The signed token embeds the id of its database row. Only a salted hash of the
signed string is stored. Every validation re-reads the row from the database.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.auth import (
    ExpiredTokenError,
    TokenError,
    create_refresh_token as sign_refresh_token,
    decode_refresh_token,
    hash_refresh_token,
    verify_refresh_token_hash,
)
from app.models.refresh_token import RefreshToken
from app.schemas.auth import ClientMetadata

logger = logging.getLogger(__name__)


class RejectionReason(str, Enum):
    """Why a refresh token was rejected. Logged only; callers see a single "invalid" outcome."""

    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED_SIGNATURE = "expired_signature"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"
    HASH_MISMATCH = "hash_mismatch"


class IssuedRefreshToken(BaseModel):
    token: str
    record_id: str
    expires_at: datetime


class RefreshTokenValidation(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    is_valid: bool
    record: RefreshToken | None = None
    user_id: str | None = None
    reason: RejectionReason | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _rejected(reason: RejectionReason, record: RefreshToken | None = None) -> RefreshTokenValidation:
    logger.info(
        "Refresh token rejected: %s (record=%s)",
        reason.value,
        record.id if record is not None else None,
    )
    return RefreshTokenValidation(is_valid=False, record=record, reason=reason)


async def create_refresh_token(
    session: AsyncSession,
    user_id: str,
    metadata: ClientMetadata | None = None,
) -> IssuedRefreshToken:
    """Persist a new active refresh token for user_id. The returned raw token is never stored."""
    metadata = metadata or ClientMetadata()
    record_id = str(uuid.uuid4())
    token = sign_refresh_token(user_id, record_id)
    token_hash = await asyncio.to_thread(hash_refresh_token, token)
    expires_at = _utcnow() + timedelta(days=settings.refresh_token_expire_days)
    session.add(
        RefreshToken(
            id=record_id,
            user_id=user_id,
            token_hash=token_hash,
            user_agent=(metadata.user_agent or "")[:512] or None,
            ip_address=metadata.ip_address,
            device_id=metadata.device_id,
            expires_at=expires_at,
            is_active=True,
        )
    )
    await session.flush()
    return IssuedRefreshToken(token=token, record_id=record_id, expires_at=expires_at)


async def find_refresh_token(session: AsyncSession, token_id: str) -> RefreshToken | None:
    r = await session.execute(
        select(RefreshToken)
        .where(RefreshToken.id == token_id)
        .execution_options(populate_existing=True)
    )
    return r.scalar_one_or_none()


async def validate_refresh_token(session: AsyncSession, token: str) -> RefreshTokenValidation:
    """
    Check signature and expiry first (no database round trip for garbage), then the stored
    record: it must exist, be active, be unexpired and its hash must match the presented token.
    """
    try:
        payload = decode_refresh_token(token)
    except ExpiredTokenError:
        return _rejected(RejectionReason.EXPIRED_SIGNATURE)
    except TokenError:
        return _rejected(RejectionReason.INVALID_SIGNATURE)

    record = await find_refresh_token(session, payload["token_id"])
    if record is None:
        return _rejected(RejectionReason.NOT_FOUND)
    if not record.is_active:
        return _rejected(RejectionReason.REVOKED, record)
    if _utcnow() > _as_utc(record.expires_at):
        return _rejected(RejectionReason.EXPIRED, record)
    hash_ok = await asyncio.to_thread(verify_refresh_token_hash, token, record.token_hash)
    if not hash_ok or record.user_id != payload["sub"]:
        logger.warning("Refresh token hash mismatch for record %s", record.id)
        return _rejected(RejectionReason.HASH_MISMATCH, record)
    return RefreshTokenValidation(is_valid=True, record=record, user_id=record.user_id)


async def revoke_refresh_token(session: AsyncSession, token_id: str) -> bool:
    """Mark the record inactive. Idempotent: True whenever the record exists."""
    r = await session.execute(
        update(RefreshToken)
        .where(RefreshToken.id == token_id)
        .values(is_active=False, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    return r.rowcount > 0


async def rotate_refresh_token(
    session: AsyncSession,
    old_token_id: str,
    user_id: str,
    metadata: ClientMetadata | None = None,
) -> IssuedRefreshToken | None:
    """
    Revoke the old record, then issue a new token. The revoke is a conditional update on
    is_active, so of two concurrent rotations of the same token only one gets a new token.
    Returns None when the old record was missing or already revoked.
    """
    r = await session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.id == old_token_id,
            RefreshToken.user_id == user_id,
            RefreshToken.is_active.is_(True),
        )
        .values(is_active=False, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if r.rowcount != 1:
        logger.warning("Refresh token rotation lost: record %s already revoked or missing", old_token_id)
        return None
    return await create_refresh_token(session, user_id, metadata)


async def revoke_all_user_tokens(session: AsyncSession, user_id: str) -> int:
    r = await session.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.is_active.is_(True))
        .values(is_active=False, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    return r.rowcount


async def cleanup_expired_tokens(session: AsyncSession) -> int:
    """Delete records that are expired or revoked. Maintenance only."""
    r = await session.execute(
        delete(RefreshToken)
        .where(or_(RefreshToken.expires_at < _utcnow(), RefreshToken.is_active.is_(False)))
        .execution_options(synchronize_session=False)
    )
    return r.rowcount


async def count_active_tokens(session: AsyncSession, user_id: str) -> int:
    r = await session.execute(
        select(func.count())
        .select_from(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.is_active.is_(True),
            RefreshToken.expires_at > _utcnow(),
        )
    )
    return r.scalar_one()


async def list_active_tokens(session: AsyncSession, user_id: str) -> list[RefreshToken]:
    r = await session.execute(
        select(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.is_active.is_(True),
            RefreshToken.expires_at > _utcnow(),
        )
        .order_by(RefreshToken.created_at.desc())
    )
    return list(r.scalars().all())
