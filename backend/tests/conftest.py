"""Pytest configuration and shared fixtures: SQLite test DB, fake identity provider and Google verifier."""

import os
import tempfile
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test config before app imports so settings/engine use it
_TEST_DB_DIR = tempfile.mkdtemp(prefix="auth-backend-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("REFRESH_TOKEN_HASH_ROUNDS", "4")

from app.api.deps import get_credential_verifier, get_identity_provider
from app.db.base import Base
from app.db.session import async_session_maker, engine
from app.main import app
from app.schemas.auth import ExternalIdentity, ProviderUser
from app.services.google_auth import InvalidAssertionError
from app.services.identity_provider import IdentityProviderError, ProviderUserNotFoundError


class FakeIdentityProvider:
    """In-memory identity provider. Operations named in `failing` raise IdentityProviderError."""

    def __init__(self):
        self.users: dict[str, dict] = {}  # email -> {"uid", "password", "display_name", "email_verified"}
        self.failing: set[str] = set()
        self.deleted: list[str] = []
        self.reset_emails: list[str] = []

    def _maybe_fail(self, op: str) -> None:
        if op in self.failing:
            raise IdentityProviderError(f"{op} unavailable")

    def add_user(self, email: str, password: str | None = None, display_name: str | None = None) -> str:
        uid = f"fb-{uuid.uuid4().hex[:12]}"
        self.users[email] = {
            "uid": uid,
            "password": password,
            "display_name": display_name,
            "email_verified": password is None,
        }
        return uid

    def _by_uid(self, uid: str) -> tuple[str, dict]:
        for email, data in self.users.items():
            if data["uid"] == uid:
                return email, data
        raise ProviderUserNotFoundError(uid)

    async def create_user(self, email, password, display_name=None):
        self._maybe_fail("create_user")
        if email in self.users:
            raise IdentityProviderError("EMAIL_EXISTS")
        return self.add_user(email, password, display_name)

    async def create_user_without_password(self, email, display_name=None, avatar_url=None):
        self._maybe_fail("create_user_without_password")
        if email in self.users:
            raise IdentityProviderError("EMAIL_EXISTS")
        return self.add_user(email, None, display_name)

    async def user_exists(self, email):
        self._maybe_fail("user_exists")
        return email in self.users

    async def get_user_by_email(self, email):
        self._maybe_fail("get_user_by_email")
        if email not in self.users:
            raise ProviderUserNotFoundError(email)
        data = self.users[email]
        return ProviderUser(
            uid=data["uid"],
            email=email,
            email_verified=data["email_verified"],
            has_password=data["password"] is not None,
        )

    async def delete_user(self, uid):
        self._maybe_fail("delete_user")
        email, _ = self._by_uid(uid)
        del self.users[email]
        self.deleted.append(uid)

    async def verify_password(self, email, password):
        self._maybe_fail("verify_password")
        data = self.users.get(email)
        return data is not None and data["password"] is not None and data["password"] == password

    async def verify_password_and_get_user(self, email, password):
        if not await self.verify_password(email, password):
            return None
        data = self.users[email]
        return ProviderUser(
            uid=data["uid"],
            email=email,
            email_verified=data["email_verified"],
            has_password=data["password"] is not None,
        )

    async def send_password_reset_email(self, email):
        self._maybe_fail("send_password_reset_email")
        self.reset_emails.append(email)

    async def update_password(self, uid, new_password):
        self._maybe_fail("update_password")
        _, data = self._by_uid(uid)
        data["password"] = new_password

    async def aclose(self):
        pass


class FakeCredentialVerifier:
    """Maps assertion strings to identities; anything else is rejected."""

    def __init__(self):
        self.identities: dict[str, ExternalIdentity] = {}

    def add(
        self,
        assertion: str,
        email: str,
        subject_id: str,
        email_verified: bool = True,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> None:
        self.identities[assertion] = ExternalIdentity(
            subject_id=subject_id,
            email=email,
            email_verified=email_verified,
            display_name=display_name,
            avatar_url=avatar_url,
        )

    async def verify(self, assertion):
        if assertion not in self.identities:
            raise InvalidAssertionError("unknown assertion")
        return self.identities[assertion]


@pytest_asyncio.fixture
async def clean_db():
    """Recreate all tables so each test starts from an empty database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def session(clean_db):
    async with async_session_maker() as s:
        yield s


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def credential_verifier():
    return FakeCredentialVerifier()


@pytest_asyncio.fixture
async def client(clean_db, identity_provider, credential_verifier):
    """AsyncClient against the app with fake auth collaborators injected."""
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    app.dependency_overrides[get_credential_verifier] = lambda: credential_verifier
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def registered_user(client):
    """Register alice@example.com through the API; returns the response JSON."""
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": "alice@example.com", "password": "secret1", "nickname": "Alice"},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.fixture
def auth_headers(registered_user):
    return {"Authorization": f"Bearer {registered_user['access_token']}"}
