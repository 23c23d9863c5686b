"""
Audit log API routes.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.audit.recorder import list_entries
from app.features.audit.schemas import AuditLogResponse
from app.features.permissions.dependencies import require_permission
from app.features.permissions.resolution import Resolution


router = APIRouter()


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    _actor: Annotated[Resolution, Depends(require_permission("access", "view_audit_logs"))],
    filter: Optional[str] = Query(None, description="Substring of action, resource type or resource id"),
    limit: int = Query(config.AUDIT_LOG_LIMIT, ge=1, le=config.AUDIT_LOG_LIMIT),
):
    """Most recent audit entries, newest first."""
    entries = await list_entries(db, filter_text=filter, limit=limit)
    return [AuditLogResponse.model_validate(entry) for entry in entries]
