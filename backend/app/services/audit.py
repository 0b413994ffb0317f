from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog


async def record_auth_event(
    session: AsyncSession,
    action: str,
    user_id: str | None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    details: dict | None = None,
) -> None:
    session.add(
        AuditLog(
            user_id=user_id,
            action=action,
            details=details,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
        )
    )
    await session.flush()
