"""
Audit recorder.

``record`` adds the entry to the caller's session and flushes it; it never
commits. The mutating operation commits state change and audit row together,
so neither can exist without the other.
"""
from enum import Enum
from typing import Any, Optional
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.audit.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    INVITE = "invite"


async def record(
    db: AsyncSession,
    action: AuditAction | str,
    resource_type: str,
    resource_id: str,
    old_data: Optional[dict[str, Any]] = None,
    new_data: Optional[dict[str, Any]] = None,
    performed_by: Optional[str] = None,
) -> AuditLog:
    """
    Append an audit entry to the current unit of work.

    Args:
        db: Session carrying the mutation being audited
        action: create / update / delete / invite
        resource_type: e.g. "user", "user_role", "user_permissions"
        resource_id: Id of the affected resource (usually the target user id)
        old_data: State observed before the write
        new_data: State after the write
        performed_by: Acting principal
    """
    entry = AuditLog(
        action=action.value if isinstance(action, AuditAction) else action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_data=old_data,
        new_data=new_data,
        performed_by=performed_by,
    )
    db.add(entry)
    await db.flush()

    log.debug(
        "Audit queued: by=%s action=%s resource=%s:%s",
        performed_by, entry.action, resource_type, resource_id,
    )
    return entry


async def list_entries(
    db: AsyncSession,
    filter_text: Optional[str] = None,
    limit: int = config.AUDIT_LOG_LIMIT,
) -> list[AuditLog]:
    """
    Return entries newest first, capped at ``limit`` (and never above AUDIT_LOG_LIMIT).

    ``filter_text`` keeps entries whose action, resource type or resource id
    contains the given substring.
    """
    limit = max(1, min(limit, config.AUDIT_LOG_LIMIT))
    stmt = select(AuditLog)

    if filter_text:
        stmt = stmt.where(
            or_(
                AuditLog.action.contains(filter_text, autoescape=True),
                AuditLog.resource_type.contains(filter_text, autoescape=True),
                AuditLog.resource_id.contains(filter_text, autoescape=True),
            )
        )

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
