"""
Google sign-in: verify ID tokens (signature, issuer, audience) and normalize their claims.

Google's signing certs are fetched through a caching requests session, so most
verifications do not hit the network.
"""

from __future__ import annotations

import asyncio
import logging
from threading import RLock
from typing import Protocol

import cachecontrol
import google.auth.transport.requests
import google.oauth2.id_token
import requests
from google.auth import exceptions as google_exceptions

from app.schemas.auth import ExternalIdentity

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class InvalidAssertionError(Exception):
    """The third-party credential could not be verified or lacks a trustworthy email."""


class CredentialVerifier(Protocol):
    async def verify(self, assertion: str) -> ExternalIdentity: ...


def _display_name(idinfo: dict) -> str | None:
    name = (idinfo.get("name") or "").strip()
    if name:
        return name
    parts = [idinfo.get("given_name") or "", idinfo.get("family_name") or ""]
    return " ".join(p.strip() for p in parts if p.strip()) or None


class GoogleCredentialVerifier:
    def __init__(self, client_id: str):
        self._client_id = client_id
        self._session = cachecontrol.CacheControl(requests.session())
        # requests sessions are not thread safe
        self._lock = RLock()

    def _verify_sync(self, token: str) -> dict:
        with self._lock:
            request = google.auth.transport.requests.Request(session=self._session)
            return google.oauth2.id_token.verify_oauth2_token(token, request, self._client_id)

    async def verify(self, assertion: str) -> ExternalIdentity:
        if not self._client_id:
            raise InvalidAssertionError("Google sign-in is not configured")
        try:
            idinfo = await asyncio.to_thread(self._verify_sync, assertion)
        except (ValueError, google_exceptions.GoogleAuthError) as e:
            raise InvalidAssertionError(f"Invalid Google token: {e}") from e
        if not idinfo or idinfo.get("iss") not in GOOGLE_ISSUERS:
            raise InvalidAssertionError("Invalid Google token issuer")
        return identity_from_idinfo(idinfo)

    def close(self) -> None:
        self._session.close()


def identity_from_idinfo(idinfo: dict) -> ExternalIdentity:
    """Normalize verified ID token claims. Tokens without a verified email are rejected."""
    subject_id = idinfo.get("sub")
    email = idinfo.get("email")
    if not subject_id or not email:
        raise InvalidAssertionError("Google token has no subject or email")
    email_verified = idinfo.get("email_verified") in (True, "true")
    if not email_verified:
        raise InvalidAssertionError("Google account email is not verified")
    return ExternalIdentity(
        subject_id=str(subject_id),
        email=email,
        email_verified=True,
        display_name=_display_name(idinfo),
        avatar_url=idinfo.get("picture"),
    )
