"""Auth request/response bodies and internal value objects shared by the auth service and routes."""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ClientMetadata(BaseModel):
    """Client details stored alongside a refresh token."""

    user_agent: str | None = None
    ip_address: str | None = None
    device_id: str | None = None


class ExternalIdentity(BaseModel):
    """Normalized identity from a verified third-party credential. Never persisted as-is."""

    subject_id: str
    email: str
    email_verified: bool
    display_name: str | None = None
    avatar_url: str | None = None


class ProviderUser(BaseModel):
    """Identity provider account as seen by the auth service."""

    uid: str
    email: str | None = None
    email_verified: bool = False
    display_name: str | None = None
    has_password: bool = False  # account holds an email/password credential


# Request bodies: plain strings; app.schemas.validation decides what is acceptable.


class RegisterBody(BaseModel):
    email: str = ""
    password: str = ""
    nickname: str | None = None


class LoginBody(BaseModel):
    email: str = ""
    password: str = ""


class ExternalSignInBody(BaseModel):
    assertion: str = Field(default="", validation_alias=AliasChoices("assertion", "credential"))


class RefreshBody(BaseModel):
    refresh_token: str = ""


class SendPasswordResetBody(BaseModel):
    email: str = ""


class ChangePasswordBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(default="", alias="currentPassword")
    new_password: str = Field(default="", alias="newPassword")


# Responses


class UserOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str
    nickname: str | None = None
    avatar: str | None = None
    external_subject_id: str | None = Field(default=None, alias="externalSubjectId")


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires


class AuthResponse(TokenPair):
    user: UserOut


class MessageResponse(BaseModel):
    message: str


class RevokedSessionsResponse(MessageResponse):
    revoked: int


class SessionOut(BaseModel):
    id: str
    user_agent: str | None = None
    ip_address: str | None = None
    device_id: str | None = None
    created_at: datetime | None = None
    expires_at: datetime
