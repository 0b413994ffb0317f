"""Explicit validation for auth request bodies, run by the routes before the auth service."""

import re

from pydantic import BaseModel, Field

from app.core.errors import AuthError, AuthErrorCode, FieldError
from app.schemas.auth import (
    ChangePasswordBody,
    ExternalSignInBody,
    LoginBody,
    RefreshBody,
    RegisterBody,
    SendPasswordResetBody,
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6
NICKNAME_MIN_LENGTH = 2
NICKNAME_MAX_LENGTH = 50
MAX_EMAIL_LENGTH = 255


class ValidationResult(BaseModel):
    ok: bool
    errors: list[FieldError] = Field(default_factory=list)

    def to_error(self) -> AuthError:
        return AuthError(code=AuthErrorCode.VALIDATION_ERROR, message="Validation failed", errors=self.errors)


def _result(errors: list[FieldError]) -> ValidationResult:
    return ValidationResult(ok=not errors, errors=errors)


def _check_email(email: str, errors: list[FieldError]) -> None:
    email = email.strip()
    if not email:
        errors.append(FieldError(field="email", message="Email is required"))
    elif len(email) > MAX_EMAIL_LENGTH or not EMAIL_RE.match(email):
        errors.append(FieldError(field="email", message="Email must be a valid email address"))


def _check_required(value: str, field: str, label: str, errors: list[FieldError]) -> None:
    if not value or not value.strip():
        errors.append(FieldError(field=field, message=f"{label} is required"))


def _check_new_password(value: str, field: str, errors: list[FieldError]) -> None:
    if len(value or "") < MIN_PASSWORD_LENGTH:
        errors.append(
            FieldError(field=field, message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        )


def validate_register(body: RegisterBody) -> ValidationResult:
    errors: list[FieldError] = []
    _check_email(body.email, errors)
    _check_new_password(body.password, "password", errors)
    if body.nickname is not None:
        nickname = body.nickname.strip()
        if len(nickname) < NICKNAME_MIN_LENGTH:
            errors.append(
                FieldError(field="nickname", message=f"Nickname must be at least {NICKNAME_MIN_LENGTH} characters long")
            )
        elif len(nickname) > NICKNAME_MAX_LENGTH:
            errors.append(
                FieldError(field="nickname", message=f"Nickname must not exceed {NICKNAME_MAX_LENGTH} characters")
            )
    return _result(errors)


def validate_login(body: LoginBody) -> ValidationResult:
    errors: list[FieldError] = []
    _check_email(body.email, errors)
    _check_required(body.password, "password", "Password", errors)
    return _result(errors)


def validate_external_sign_in(body: ExternalSignInBody) -> ValidationResult:
    errors: list[FieldError] = []
    _check_required(body.assertion, "assertion", "Credential", errors)
    return _result(errors)


def validate_refresh(body: RefreshBody) -> ValidationResult:
    errors: list[FieldError] = []
    _check_required(body.refresh_token, "refresh_token", "Refresh token", errors)
    return _result(errors)


def validate_password_reset(body: SendPasswordResetBody) -> ValidationResult:
    errors: list[FieldError] = []
    _check_email(body.email, errors)
    return _result(errors)


def validate_change_password(body: ChangePasswordBody) -> ValidationResult:
    errors: list[FieldError] = []
    _check_required(body.current_password, "currentPassword", "Current password", errors)
    _check_new_password(body.new_password, "newPassword", errors)
    return _result(errors)
