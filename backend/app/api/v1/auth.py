"""Auth: register, login, Google sign-in, refresh, logout, password reset/change, me, sessions."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_auth_service, get_client_metadata, get_current_user
from app.core.errors import AuthError
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    ChangePasswordBody,
    ClientMetadata,
    ExternalSignInBody,
    LoginBody,
    MessageResponse,
    RefreshBody,
    RegisterBody,
    RevokedSessionsResponse,
    SendPasswordResetBody,
    SessionOut,
    TokenPair,
    UserOut,
)
from app.schemas.validation import (
    ValidationResult,
    validate_change_password,
    validate_external_sign_in,
    validate_login,
    validate_password_reset,
    validate_refresh,
    validate_register,
)
from app.services.auth import AuthService, user_out
from app.services.refresh_tokens import list_active_tokens

router = APIRouter(prefix="/auth", tags=["auth"])

Service = Annotated[AuthService, Depends(get_auth_service)]
Metadata = Annotated[ClientMetadata, Depends(get_client_metadata)]


def _ensure_valid(result: ValidationResult) -> None:
    if not result.ok:
        raise result.to_error().to_http_exception()


def _unwrap(result):
    """Raise AuthError results as HTTP errors; pass anything else through."""
    if isinstance(result, AuthError):
        raise result.to_http_exception()
    return result


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=201,
    summary="Register with email and password",
    responses={
        400: {"description": "Validation failed"},
        409: {"description": "Email already registered"},
        500: {"description": "Registration failed"},
    },
)
async def register(service: Service, metadata: Metadata, body: RegisterBody) -> AuthResponse:
    _ensure_valid(validate_register(body))
    return _unwrap(await service.register(body.email, body.password, body.nickname, metadata))


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login with email and password",
    responses={401: {"description": "Invalid email or password"}},
)
async def login(service: Service, metadata: Metadata, body: LoginBody) -> AuthResponse:
    _ensure_valid(validate_login(body))
    return _unwrap(await service.login(body.email, body.password, metadata))


@router.post(
    "/google",
    response_model=AuthResponse,
    summary="Sign in with a Google ID token",
    responses={401: {"description": "Google authentication failed"}},
)
async def google_sign_in(service: Service, metadata: Metadata, body: ExternalSignInBody) -> AuthResponse:
    _ensure_valid(validate_external_sign_in(body))
    return _unwrap(await service.external_sign_in(body.assertion, metadata))


@router.post(
    "/refresh",
    response_model=TokenPair,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={401: {"description": "Refresh token invalid, expired or already used"}},
)
async def refresh_tokens(service: Service, metadata: Metadata, body: RefreshBody) -> TokenPair:
    """Rotation: the presented refresh token is revoked and cannot be used again."""
    _ensure_valid(validate_refresh(body))
    return _unwrap(await service.refresh(body.refresh_token, metadata))


@router.post("/logout", response_model=MessageResponse, summary="Revoke a refresh token")
async def logout(service: Service, metadata: Metadata, body: RefreshBody) -> MessageResponse:
    return await service.logout(body.refresh_token, metadata)


@router.post(
    "/logout-all",
    response_model=RevokedSessionsResponse,
    summary="Revoke every refresh token of the current user",
    responses={401: {"description": "Not authenticated"}},
)
async def logout_all(
    service: Service,
    metadata: Metadata,
    user: Annotated[User, Depends(get_current_user)],
) -> RevokedSessionsResponse:
    return await service.logout_all(user, metadata)


@router.post("/send-password-reset", response_model=MessageResponse, summary="Send a password reset email")
async def send_password_reset(service: Service, body: SendPasswordResetBody) -> MessageResponse:
    _ensure_valid(validate_password_reset(body))
    return await service.send_password_reset(body.email)


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change password of the current user",
    responses={
        400: {"description": "Account has no password credential or update failed"},
        401: {"description": "Not authenticated or current password incorrect"},
    },
)
async def change_password(
    service: Service,
    metadata: Metadata,
    user: Annotated[User, Depends(get_current_user)],
    body: ChangePasswordBody,
) -> MessageResponse:
    _ensure_valid(validate_change_password(body))
    return _unwrap(await service.change_password(user.id, body.current_password, body.new_password, metadata))


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={401: {"description": "Not authenticated or invalid token"}},
)
async def me(user: Annotated[User, Depends(get_current_user)]) -> UserOut:
    return user_out(user)


@router.get(
    "/sessions",
    response_model=list[SessionOut],
    summary="List active refresh token sessions of the current user",
    responses={401: {"description": "Not authenticated"}},
)
async def sessions(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
) -> list[SessionOut]:
    tokens = await list_active_tokens(session, user.id)
    return [
        SessionOut(
            id=t.id,
            user_agent=t.user_agent,
            ip_address=t.ip_address,
            device_id=t.device_id,
            created_at=t.created_at,
            expires_at=t.expires_at,
        )
        for t in tokens
    ]
