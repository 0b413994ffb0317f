"""Auth error kinds returned (not raised) by the auth service, and their HTTP mapping."""

from enum import Enum

from fastapi import HTTPException
from pydantic import BaseModel, Field


class AuthErrorCode(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    USER_ALREADY_EXISTS = "USER_ALREADY_EXISTS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_INACTIVE = "USER_INACTIVE"
    INVALID_TOKEN = "INVALID_TOKEN"
    EXPIRED_TOKEN = "EXPIRED_TOKEN"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    EXTERNAL_AUTH_FAILED = "EXTERNAL_AUTH_FAILED"
    UNAUTHORIZED = "UNAUTHORIZED"
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_CODES: dict[AuthErrorCode, int] = {
    AuthErrorCode.INVALID_CREDENTIALS: 401,
    AuthErrorCode.USER_ALREADY_EXISTS: 409,
    AuthErrorCode.USER_NOT_FOUND: 404,
    AuthErrorCode.USER_INACTIVE: 401,
    AuthErrorCode.INVALID_TOKEN: 401,
    AuthErrorCode.EXPIRED_TOKEN: 401,
    AuthErrorCode.INVALID_REFRESH_TOKEN: 401,
    AuthErrorCode.TOKEN_REFRESH_FAILED: 401,
    AuthErrorCode.EXTERNAL_AUTH_FAILED: 401,
    AuthErrorCode.UNAUTHORIZED: 401,
    AuthErrorCode.BAD_REQUEST: 400,
    AuthErrorCode.VALIDATION_ERROR: 400,
    AuthErrorCode.INTERNAL_ERROR: 500,
}

DEFAULT_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid email or password",
    AuthErrorCode.USER_ALREADY_EXISTS: "User already exists",
    AuthErrorCode.USER_NOT_FOUND: "User not found",
    AuthErrorCode.USER_INACTIVE: "User account is inactive",
    AuthErrorCode.INVALID_TOKEN: "Invalid or malformed token",
    AuthErrorCode.EXPIRED_TOKEN: "Token has expired",
    AuthErrorCode.INVALID_REFRESH_TOKEN: "Invalid or expired refresh token",
    AuthErrorCode.TOKEN_REFRESH_FAILED: "Failed to refresh token",
    AuthErrorCode.EXTERNAL_AUTH_FAILED: "Google authentication failed",
    AuthErrorCode.UNAUTHORIZED: "Unauthorized",
    AuthErrorCode.BAD_REQUEST: "Bad request",
    AuthErrorCode.VALIDATION_ERROR: "Validation failed",
    AuthErrorCode.INTERNAL_ERROR: "An unexpected error occurred",
}


class FieldError(BaseModel):
    field: str
    message: str


class AuthError(BaseModel):
    """A failed auth operation. Detail beyond `message` is never sent to the client."""

    code: AuthErrorCode
    message: str
    errors: list[FieldError] = Field(default_factory=list)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.code]

    def to_http_exception(self) -> HTTPException:
        detail: dict = {"code": self.code.value, "message": self.message}
        if self.errors:
            detail["errors"] = [e.model_dump() for e in self.errors]
        headers = {"WWW-Authenticate": "Bearer"} if self.status_code == 401 else None
        return HTTPException(status_code=self.status_code, detail=detail, headers=headers)


def auth_error(code: AuthErrorCode, message: str | None = None) -> AuthError:
    return AuthError(code=code, message=message or DEFAULT_MESSAGES[code])
