"""
Auth service: register, login, Google sign-in, refresh, logout, password reset and change.

Keeps the users table and the identity provider consistent without a distributed
transaction: the users table is the source of truth, the provider only holds password
credentials. When a users insert fails after the provider account was created, the
provider account is deleted on a best-effort basis; a failed cleanup leaves an orphan
in the provider, which is logged and never masks the original error.

Domain failures are returned as AuthError values; only unexpected failures raise.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.auth import create_access_token
from app.core.errors import AuthError, AuthErrorCode, auth_error
from app.core.metrics import track
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    ClientMetadata,
    ExternalIdentity,
    MessageResponse,
    ProviderUser,
    RevokedSessionsResponse,
    TokenPair,
    UserOut,
)
from app.services.audit import record_auth_event
from app.services.google_auth import CredentialVerifier, InvalidAssertionError
from app.services.identity_provider import IdentityProvider
from app.services.refresh_tokens import (
    create_refresh_token,
    revoke_all_user_tokens,
    revoke_refresh_token,
    rotate_refresh_token,
    validate_refresh_token,
)

logger = logging.getLogger(__name__)

LOGOUT_MESSAGE = "Logged out successfully"
PASSWORD_RESET_MESSAGE = "If a user with this email exists, a password reset email has been sent"
FEDERATED_PASSWORD_RESET_MESSAGE = "Google users cannot reset their password. Please use Google to sign in."
PASSWORD_CHANGED_MESSAGE = "Password changed successfully"
NICKNAME_MAX_LENGTH = 50


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        nickname=user.nickname,
        avatar=user.avatar_url,
        external_subject_id=user.google_id,
    )


class AuthService:
    def __init__(
        self,
        session: AsyncSession,
        identity_provider: IdentityProvider,
        credential_verifier: CredentialVerifier | None = None,
    ):
        self.session = session
        self.identity_provider = identity_provider
        self.credential_verifier = credential_verifier

    async def get_user(self, user_id: str) -> User | None:
        r = await self.session.execute(select(User).where(User.id == user_id))
        return r.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> User | None:
        r = await self.session.execute(select(User).where(User.email == email))
        return r.scalar_one_or_none()

    async def _issue_tokens(self, user: User, metadata: ClientMetadata | None) -> AuthResponse:
        access = create_access_token(user.id, user.email)
        issued = await create_refresh_token(self.session, user.id, metadata)
        return AuthResponse(
            access_token=access,
            refresh_token=issued.token,
            expires_in=settings.access_token_expire_seconds,
            user=user_out(user),
        )

    async def _audit(self, action: str, user_id: str | None, metadata: ClientMetadata | None, **details) -> None:
        metadata = metadata or ClientMetadata()
        await record_auth_event(
            self.session,
            action,
            user_id,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            details=details or None,
        )

    async def _delete_orphaned_provider_user(self, uid: str) -> None:
        """Compensation for a failed users insert. Never raises."""
        try:
            await self.identity_provider.delete_user(uid)
            logger.info("Removed orphaned identity provider user %s", uid)
        except Exception:
            logger.exception("Failed to remove orphaned identity provider user %s", uid)

    async def register(
        self,
        email: str,
        password: str,
        nickname: str | None = None,
        metadata: ClientMetadata | None = None,
    ) -> AuthResponse | AuthError:
        email = email.strip()
        nickname = (nickname or "").strip() or None
        if await self.get_user_by_email(email) is not None:
            track("register", "user_exists")
            return auth_error(AuthErrorCode.USER_ALREADY_EXISTS, f"User with email {email} already exists")

        try:
            uid = await self.identity_provider.create_user(email, password, nickname)
        except Exception:
            logger.exception("Register: identity provider account creation failed")
            track("register", "provider_error")
            return auth_error(AuthErrorCode.INTERNAL_ERROR, "Registration failed")

        # Password stays with the identity provider only
        user = User(email=email, nickname=nickname, identity_provider_uid=uid, has_password_credential=True)
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError:
            logger.warning("Register: users insert conflicted for provider user %s", uid)
            await self.session.rollback()
            await self._delete_orphaned_provider_user(uid)
            track("register", "user_exists")
            return auth_error(AuthErrorCode.USER_ALREADY_EXISTS, f"User with email {email} already exists")
        except Exception:
            logger.exception("Register: users insert failed for provider user %s", uid)
            await self._delete_orphaned_provider_user(uid)
            track("register", "error")
            raise

        logger.info("User registered: %s", user.id)
        response = await self._issue_tokens(user, metadata)
        await self._audit("register", user.id, metadata)
        track("register", "success")
        return response

    async def login(
        self,
        email: str,
        password: str,
        metadata: ClientMetadata | None = None,
    ) -> AuthResponse | AuthError:
        email = email.strip()
        try:
            provider_user = await self.identity_provider.verify_password_and_get_user(email, password)
        except Exception as e:
            logger.warning("Login: identity provider check failed: %s", e)
            provider_user = None
        if provider_user is None:
            track("login", "invalid_credentials")
            return auth_error(AuthErrorCode.INVALID_CREDENTIALS)

        user = await self.get_user_by_email(email)
        if user is None:
            user = await self._provision_login_user(email, provider_user)

        if not user.is_active:
            track("login", "inactive")
            return auth_error(AuthErrorCode.USER_INACTIVE)

        if user.identity_provider_uid is None:
            user.identity_provider_uid = provider_user.uid
            logger.info("Login: linked user %s to provider user %s", user.id, provider_user.uid)
        elif user.identity_provider_uid != provider_user.uid:
            logger.warning(
                "Login: user %s is linked to provider user %s, not %s",
                user.id,
                user.identity_provider_uid,
                provider_user.uid,
            )
        user.has_password_credential = True
        await self.session.flush()

        response = await self._issue_tokens(user, metadata)
        await self._audit("login", user.id, metadata)
        track("login", "success")
        return response

    async def _provision_login_user(self, email: str, provider_user: ProviderUser) -> User:
        """Users row for a provider account that has none yet; a concurrent insert wins."""
        user = User(email=email, identity_provider_uid=provider_user.uid, has_password_credential=True)
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            existing = await self.get_user_by_email(email)
            if existing is None:
                raise
            logger.info("Login: users row for %s was created concurrently", provider_user.uid)
            return existing
        logger.info("Login: provisioned user %s for provider user %s", user.id, provider_user.uid)
        return user

    async def _find_user_for_identity(self, identity: ExternalIdentity) -> User | None:
        """Existing account for a Google identity: by Google subject id, else by email."""
        r = await self.session.execute(select(User).where(User.google_id == identity.subject_id))
        user = r.scalar_one_or_none()
        if user is not None:
            return user
        return await self.get_user_by_email(identity.email)

    async def _provision_provider_user(self, identity: ExternalIdentity) -> ProviderUser | None:
        """Best effort: provider account for a new Google user. None when it cannot be had."""
        try:
            if await self.identity_provider.user_exists(identity.email):
                return await self.identity_provider.get_user_by_email(identity.email)
            uid = await self.identity_provider.create_user_without_password(
                identity.email, identity.display_name, identity.avatar_url
            )
        except Exception as e:
            logger.warning("Google sign-in: continuing without identity provider account: %s", e)
            return None
        return ProviderUser(uid=uid, email=identity.email, email_verified=True)

    async def external_sign_in(
        self,
        assertion: str,
        metadata: ClientMetadata | None = None,
    ) -> AuthResponse | AuthError:
        try:
            if self.credential_verifier is None:
                raise InvalidAssertionError("No credential verifier configured")
            identity = await self.credential_verifier.verify(assertion)
            if not identity.email_verified:
                raise InvalidAssertionError("Unverified email")

            user = await self._find_user_for_identity(identity)
            if user is not None:
                if not user.is_active:
                    track("google_sign_in", "inactive")
                    return auth_error(AuthErrorCode.EXTERNAL_AUTH_FAILED)
                user.google_id = identity.subject_id
                if identity.avatar_url:
                    user.avatar_url = identity.avatar_url
                if not user.nickname and identity.display_name:
                    user.nickname = identity.display_name[:NICKNAME_MAX_LENGTH]
                await self.session.flush()
                logger.info("Google sign-in: linked user %s", user.id)
            else:
                provider_user = await self._provision_provider_user(identity)
                user = User(
                    email=identity.email,
                    google_id=identity.subject_id,
                    nickname=(identity.display_name or "")[:NICKNAME_MAX_LENGTH] or None,
                    avatar_url=identity.avatar_url,
                    identity_provider_uid=provider_user.uid if provider_user else None,
                    # An existing provider account may already hold a password
                    has_password_credential=provider_user.has_password if provider_user else False,
                )
                self.session.add(user)
                await self.session.flush()
                logger.info("Google sign-in: created user %s", user.id)

            response = await self._issue_tokens(user, metadata)
            await self._audit("google_sign_in", user.id, metadata)
        except InvalidAssertionError as e:
            logger.warning("Google sign-in rejected: %s", e)
            track("google_sign_in", "invalid_assertion")
            return auth_error(AuthErrorCode.EXTERNAL_AUTH_FAILED)
        except Exception:
            logger.exception("Google sign-in failed")
            track("google_sign_in", "error")
            await self.session.rollback()
            return auth_error(AuthErrorCode.EXTERNAL_AUTH_FAILED)
        track("google_sign_in", "success")
        return response

    async def refresh(
        self,
        refresh_token: str,
        metadata: ClientMetadata | None = None,
    ) -> TokenPair | AuthError:
        try:
            validation = await validate_refresh_token(self.session, refresh_token.strip())
            if not validation.is_valid or validation.record is None:
                track("refresh", "invalid")
                return auth_error(AuthErrorCode.INVALID_REFRESH_TOKEN)

            user = await self.get_user(validation.user_id)
            if user is None or not user.is_active:
                logger.warning("Refresh: user %s missing or inactive", validation.user_id)
                track("refresh", "user_not_found")
                return auth_error(AuthErrorCode.TOKEN_REFRESH_FAILED)

            issued = await rotate_refresh_token(self.session, validation.record.id, user.id, metadata)
            if issued is None:
                track("refresh", "rotation_lost")
                return auth_error(AuthErrorCode.TOKEN_REFRESH_FAILED)

            await self._audit("refresh", user.id, metadata)
        except Exception:
            logger.exception("Refresh failed")
            track("refresh", "error")
            await self.session.rollback()
            return auth_error(AuthErrorCode.TOKEN_REFRESH_FAILED)
        track("refresh", "success")
        return TokenPair(
            access_token=create_access_token(user.id, user.email),
            refresh_token=issued.token,
            expires_in=settings.access_token_expire_seconds,
        )

    async def logout(self, refresh_token: str, metadata: ClientMetadata | None = None) -> MessageResponse:
        """Revoke the token if it is valid. Same answer whatever happens."""
        try:
            validation = await validate_refresh_token(self.session, refresh_token.strip())
            if validation.is_valid and validation.record is not None:
                await revoke_refresh_token(self.session, validation.record.id)
                await self._audit("logout", validation.user_id, metadata)
                track("logout", "revoked")
            else:
                track("logout", "ignored")
        except Exception:
            logger.exception("Logout failed")
            track("logout", "error")
            await self.session.rollback()
        return MessageResponse(message=LOGOUT_MESSAGE)

    async def logout_all(self, user: User, metadata: ClientMetadata | None = None) -> RevokedSessionsResponse:
        count = await revoke_all_user_tokens(self.session, user.id)
        await self._audit("logout_all", user.id, metadata, revoked=count)
        track("logout_all", "success")
        logger.info("Revoked %s refresh tokens for user %s", count, user.id)
        return RevokedSessionsResponse(message=LOGOUT_MESSAGE, revoked=count)

    async def send_password_reset(self, email: str) -> MessageResponse:
        """
        Generic answer whether or not the account exists or the email was sent.
        Google-only accounts get an explicit hint instead.
        """
        email = email.strip()
        try:
            user = await self.get_user_by_email(email)
        except Exception:
            logger.exception("Password reset: user lookup failed")
            return MessageResponse(message=PASSWORD_RESET_MESSAGE)
        if user is None:
            track("password_reset", "unknown_email")
            return MessageResponse(message=PASSWORD_RESET_MESSAGE)
        if user.is_federated_only:
            track("password_reset", "federated_only")
            return MessageResponse(message=FEDERATED_PASSWORD_RESET_MESSAGE)
        if user.identity_provider_uid is None:
            track("password_reset", "not_linked")
            return MessageResponse(message=PASSWORD_RESET_MESSAGE)
        try:
            await self.identity_provider.send_password_reset_email(email)
            track("password_reset", "sent")
        except Exception as e:
            logger.warning("Password reset email failed for user %s: %s", user.id, e)
            track("password_reset", "provider_error")
        return MessageResponse(message=PASSWORD_RESET_MESSAGE)

    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        metadata: ClientMetadata | None = None,
    ) -> MessageResponse | AuthError:
        user = await self.get_user(user_id)
        if user is None or not user.is_active:
            return auth_error(AuthErrorCode.UNAUTHORIZED, "User not found")
        if not user.identity_provider_uid:
            return auth_error(AuthErrorCode.BAD_REQUEST, "User not linked to the identity provider")

        try:
            password_ok = await self.identity_provider.verify_password(user.email, current_password)
        except Exception as e:
            logger.warning("Change password: identity provider check failed: %s", e)
            password_ok = False
        if not password_ok:
            track("password_change", "invalid_credentials")
            return auth_error(AuthErrorCode.UNAUTHORIZED, "Current password is incorrect")

        try:
            await self.identity_provider.update_password(user.identity_provider_uid, new_password)
        except Exception:
            logger.exception("Change password: provider update failed for user %s", user.id)
            track("password_change", "provider_error")
            return auth_error(AuthErrorCode.BAD_REQUEST, "Failed to change password")

        user.has_password_credential = True
        await self._audit("password_change", user.id, metadata)
        track("password_change", "success")
        return MessageResponse(message=PASSWORD_CHANGED_MESSAGE)
