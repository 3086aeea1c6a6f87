import json
import logging
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from senditfast.models.audit_log import AuditLog

logger = logging.getLogger("senditfast")


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def record_audit(
    db: AsyncSession,
    action: str,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    request: Optional[Request] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Append an audit entry. A failure here is logged and never reaches the caller."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") if request is not None else None,
        details=json.dumps(details, default=str) if details else None,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError as e:
        logger.error("audit_write_failed action=%s resource=%s err=%s", action, resource_id, e)
        await db.rollback()
