"""FastAPI dependencies: auth collaborators from app state, auth service, current user from JWT."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import ExpiredTokenError, TokenError, decode_access_token, extract_bearer_token
from app.core.errors import AuthErrorCode, auth_error
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import ClientMetadata
from app.services.auth import AuthService
from app.services.google_auth import CredentialVerifier
from app.services.identity_provider import IdentityProvider


def get_identity_provider(request: Request) -> IdentityProvider:
    provider = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        raise HTTPException(status_code=503, detail="Identity provider is not configured")
    return provider


def get_credential_verifier(request: Request) -> CredentialVerifier | None:
    return getattr(request.app.state, "credential_verifier", None)


def get_auth_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    identity_provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
    credential_verifier: Annotated[CredentialVerifier | None, Depends(get_credential_verifier)],
) -> AuthService:
    return AuthService(session, identity_provider, credential_verifier)


def get_client_metadata(request: Request) -> ClientMetadata:
    return ClientMetadata(
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.client.host if request.client else None,
        device_id=request.headers.get("X-Device-Id"),
    )


async def get_current_user(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise auth_error(AuthErrorCode.UNAUTHORIZED, "Not authenticated").to_http_exception()
    try:
        payload = decode_access_token(token)
    except ExpiredTokenError:
        raise auth_error(AuthErrorCode.EXPIRED_TOKEN).to_http_exception()
    except TokenError:
        raise auth_error(AuthErrorCode.INVALID_TOKEN).to_http_exception()
    r = await session.execute(select(User).where(User.id == payload["sub"]))
    user = r.scalar_one_or_none()
    if not user or not user.is_active:
        raise auth_error(AuthErrorCode.UNAUTHORIZED, "User not found").to_http_exception()
    return user
