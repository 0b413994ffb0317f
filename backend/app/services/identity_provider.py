"""
Identity provider gateway: Firebase Authentication holds password credentials and sends
password reset emails.

Admin operations go through a named firebase-admin App built from an explicit service
account; password checks and reset emails go through the Identity Toolkit REST API.
No call is retried here; every failure surfaces to the caller as IdentityProviderError.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Protocol

import firebase_admin
import httpx
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError

from app.config import Settings
from app.schemas.auth import ProviderUser

logger = logging.getLogger(__name__)

# Identity Toolkit error messages that mean "wrong email or password", not an outage
_BAD_CREDENTIAL_ERRORS = (
    "INVALID_PASSWORD",
    "EMAIL_NOT_FOUND",
    "INVALID_LOGIN_CREDENTIALS",
    "USER_DISABLED",
    "INVALID_EMAIL",
    "MISSING_PASSWORD",
)


class IdentityProviderError(Exception):
    """A call to the identity provider failed."""


class ProviderUserNotFoundError(IdentityProviderError):
    pass


class IdentityProviderInitError(IdentityProviderError):
    """The provider client could not be built from configuration."""


class IdentityProvider(Protocol):
    async def create_user(self, email: str, password: str, display_name: str | None = None) -> str: ...

    async def create_user_without_password(
        self, email: str, display_name: str | None = None, avatar_url: str | None = None
    ) -> str: ...

    async def user_exists(self, email: str) -> bool: ...

    async def get_user_by_email(self, email: str) -> ProviderUser: ...

    async def delete_user(self, uid: str) -> None: ...

    async def verify_password(self, email: str, password: str) -> bool: ...

    async def verify_password_and_get_user(self, email: str, password: str) -> ProviderUser | None: ...

    async def send_password_reset_email(self, email: str) -> None: ...

    async def update_password(self, uid: str, new_password: str) -> None: ...

    async def aclose(self) -> None: ...


PASSWORD_PROVIDER_ID = "password"


def _to_provider_user(record) -> ProviderUser:
    linked = getattr(record, "provider_data", None) or []
    return ProviderUser(
        uid=record.uid,
        email=record.email,
        email_verified=bool(record.email_verified),
        display_name=record.display_name,
        has_password=any(p.provider_id == PASSWORD_PROVIDER_ID for p in linked),
    )


class FirebaseIdentityProvider:
    """Firebase-backed IdentityProvider. Build with initialize(); release with aclose()."""

    def __init__(self, app: firebase_admin.App, http_client: httpx.AsyncClient, api_key: str, base_url: str):
        self._app = app
        self._http = http_client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    @classmethod
    def initialize(cls, settings: Settings) -> "FirebaseIdentityProvider":
        """Return a ready provider or raise IdentityProviderInitError."""
        missing = [
            name
            for name in ("firebase_project_id", "firebase_client_email", "firebase_private_key", "firebase_api_key")
            if not getattr(settings, name).strip()
        ]
        if missing:
            raise IdentityProviderInitError(f"Missing Firebase settings: {', '.join(missing)}")
        try:
            cred = credentials.Certificate(
                {
                    "type": "service_account",
                    "project_id": settings.firebase_project_id,
                    "client_email": settings.firebase_client_email,
                    "private_key": settings.firebase_private_key.replace("\\n", "\n"),
                    "token_uri": "https://oauth2.googleapis.com/token",
                }
            )
            app = firebase_admin.initialize_app(
                cred,
                options={
                    "projectId": settings.firebase_project_id,
                    "httpTimeout": settings.identity_provider_timeout_seconds,
                },
                name=f"auth-backend-{uuid.uuid4().hex[:8]}",
            )
        except (ValueError, OSError) as e:
            raise IdentityProviderInitError(f"Invalid Firebase credentials: {e}") from e
        http_client = httpx.AsyncClient(timeout=settings.identity_provider_timeout_seconds)
        logger.info("Firebase identity provider initialized for project %s", settings.firebase_project_id)
        return cls(app, http_client, settings.firebase_api_key, settings.firebase_auth_base_url)

    async def aclose(self) -> None:
        await self._http.aclose()
        firebase_admin.delete_app(self._app)

    async def _admin(self, fn, *args, **kwargs):
        """Run a blocking firebase-admin call in a worker thread."""
        try:
            return await asyncio.to_thread(fn, *args, app=self._app, **kwargs)
        except firebase_auth.UserNotFoundError as e:
            raise ProviderUserNotFoundError(str(e)) from e
        except FirebaseError as e:
            raise IdentityProviderError(f"Firebase {fn.__name__} failed: {e}") from e

    async def _rest(self, endpoint: str, body: dict) -> httpx.Response:
        url = f"{self._base_url}/accounts:{endpoint}"
        try:
            return await self._http.post(url, params={"key": self._api_key}, json=body)
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Identity Toolkit {endpoint} request failed: {e}") from e

    async def create_user(self, email: str, password: str, display_name: str | None = None) -> str:
        record = await self._admin(
            firebase_auth.create_user,
            email=email,
            password=password,
            display_name=display_name,
            email_verified=False,
        )
        logger.info("Identity provider user created: %s", record.uid)
        return record.uid

    async def create_user_without_password(
        self, email: str, display_name: str | None = None, avatar_url: str | None = None
    ) -> str:
        # Verified by Google before we get here
        record = await self._admin(
            firebase_auth.create_user,
            email=email,
            display_name=display_name,
            photo_url=avatar_url,
            email_verified=True,
        )
        logger.info("Identity provider user created without password: %s", record.uid)
        return record.uid

    async def user_exists(self, email: str) -> bool:
        try:
            await self._admin(firebase_auth.get_user_by_email, email)
        except ProviderUserNotFoundError:
            return False
        return True

    async def get_user_by_email(self, email: str) -> ProviderUser:
        return _to_provider_user(await self._admin(firebase_auth.get_user_by_email, email))

    async def delete_user(self, uid: str) -> None:
        await self._admin(firebase_auth.delete_user, uid)
        logger.info("Identity provider user deleted: %s", uid)

    async def verify_password(self, email: str, password: str) -> bool:
        return await self._sign_in_with_password(email, password) is not None

    async def verify_password_and_get_user(self, email: str, password: str) -> ProviderUser | None:
        uid = await self._sign_in_with_password(email, password)
        if uid is None:
            return None
        return _to_provider_user(await self._admin(firebase_auth.get_user, uid))

    async def _sign_in_with_password(self, email: str, password: str) -> str | None:
        """Provider uid when the password is correct, None when it is not."""
        r = await self._rest(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        if r.status_code == 200:
            return r.json().get("localId")
        error = _error_message(r)
        if r.status_code == 400 and error.startswith(_BAD_CREDENTIAL_ERRORS):
            return None
        logger.warning("Identity Toolkit signInWithPassword -> %s %s", r.status_code, error)
        raise IdentityProviderError(f"signInWithPassword failed with status {r.status_code}")

    async def send_password_reset_email(self, email: str) -> None:
        r = await self._rest("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})
        if r.status_code != 200:
            logger.warning("Identity Toolkit sendOobCode -> %s %s", r.status_code, _error_message(r))
            raise IdentityProviderError(f"sendOobCode failed with status {r.status_code}")

    async def update_password(self, uid: str, new_password: str) -> None:
        await self._admin(firebase_auth.update_user, uid, password=new_password)
        logger.info("Identity provider password updated: %s", uid)


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("error", {}).get("message", ""))
    except ValueError:
        return (response.text or "")[:200]
