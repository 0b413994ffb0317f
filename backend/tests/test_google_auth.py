"""Google ID token verification with the token check mocked out."""

from unittest.mock import patch

import pytest
from google.auth import exceptions as google_exceptions

from app.services.google_auth import GoogleCredentialVerifier, InvalidAssertionError, identity_from_idinfo

CLIENT_ID = "client-123.apps.googleusercontent.com"


def _idinfo(**overrides):
    info = {
        "iss": "https://accounts.google.com",
        "aud": CLIENT_ID,
        "sub": "google-123",
        "email": "dave@example.com",
        "email_verified": True,
        "name": "Dave Example",
        "picture": "https://example.com/dave.png",
    }
    info.update(overrides)
    return info


@pytest.fixture
def verifier():
    v = GoogleCredentialVerifier(CLIENT_ID)
    yield v
    v.close()


@pytest.mark.asyncio
async def test_verify_returns_identity(verifier):
    with patch("google.oauth2.id_token.verify_oauth2_token", return_value=_idinfo()) as mock_verify:
        identity = await verifier.verify("AnythingSinceMocked")
    assert identity.subject_id == "google-123"
    assert identity.email == "dave@example.com"
    assert identity.email_verified is True
    assert identity.display_name == "Dave Example"
    assert identity.avatar_url == "https://example.com/dave.png"
    args = mock_verify.call_args.args
    assert args[0] == "AnythingSinceMocked"
    assert args[2] == CLIENT_ID


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [ValueError("Token expired"), google_exceptions.TransportError("certs unreachable")],
)
async def test_verify_rejects_bad_token(verifier, error):
    with patch("google.oauth2.id_token.verify_oauth2_token", side_effect=error):
        with pytest.raises(InvalidAssertionError):
            await verifier.verify("AnythingSinceMocked")


@pytest.mark.asyncio
async def test_verify_rejects_foreign_issuer(verifier):
    with patch("google.oauth2.id_token.verify_oauth2_token", return_value=_idinfo(iss="https://evil.example.com")):
        with pytest.raises(InvalidAssertionError):
            await verifier.verify("AnythingSinceMocked")


@pytest.mark.asyncio
async def test_verify_without_client_id():
    v = GoogleCredentialVerifier("")
    try:
        with pytest.raises(InvalidAssertionError):
            await v.verify("AnythingSinceMocked")
    finally:
        v.close()


def test_identity_accepts_string_email_verified():
    identity = identity_from_idinfo(_idinfo(email_verified="true"))
    assert identity.email_verified is True


@pytest.mark.parametrize("email_verified", [False, "false", None])
def test_identity_rejects_unverified_email(email_verified):
    with pytest.raises(InvalidAssertionError):
        identity_from_idinfo(_idinfo(email_verified=email_verified))


@pytest.mark.parametrize("missing", ["sub", "email"])
def test_identity_requires_subject_and_email(missing):
    info = _idinfo()
    del info[missing]
    with pytest.raises(InvalidAssertionError):
        identity_from_idinfo(info)


def test_identity_display_name_from_given_and_family_name():
    info = _idinfo(given_name="Dave", family_name="Example")
    del info["name"]
    assert identity_from_idinfo(info).display_name == "Dave Example"
    del info["family_name"]
    assert identity_from_idinfo(info).display_name == "Dave"
    del info["given_name"]
    del info["picture"]
    identity = identity_from_idinfo(info)
    assert identity.display_name is None
    assert identity.avatar_url is None
