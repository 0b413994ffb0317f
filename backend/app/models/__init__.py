from app.models.user import User
from app.models.refresh_token import RefreshToken
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "RefreshToken",
    "AuditLog",
]
