"""
Authorization API routes.

Read-only views of the catalog plus the resolution queries consumed by other
applications: effective permission sets and point checks.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import ForbiddenError
from app.features.permissions.catalog import AccessCatalog
from app.features.permissions.dependencies import get_actor, get_catalog, require_permission
from app.features.permissions.resolution import Resolution, has_permission, resolve
from app.features.permissions.schemas import (
    AppSummaryResponse,
    EffectivePermissionsResponse,
    PermissionResponse,
    RolePermissionsResponse,
    RoleResponse,
)
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def build_effective_response(catalog: AccessCatalog, resolution: Resolution) -> EffectivePermissionsResponse:
    permissions = [catalog.permission(pid) for pid in resolution.effective_permission_ids]
    permissions = sorted((p for p in permissions if p is not None), key=lambda p: (p.app, p.action, p.resource or ""))
    return EffectivePermissionsResponse(
        user_id=resolution.user_id,
        role=RoleResponse.model_validate(resolution.role),
        bypasses_checks=resolution.is_super,
        effective_permissions=[PermissionResponse.model_validate(p) for p in permissions],
        granted_permission_ids=sorted(resolution.granted_ids),
        revoked_permission_ids=sorted(resolution.revoked_ids),
    )


def _ensure_can_inspect(catalog: AccessCatalog, actor: Resolution, user_id: str) -> None:
    """Anyone may inspect themself; inspecting others requires manage_users."""
    if user_id != actor.user_id and not actor.allows(catalog, "access", "manage_users"):
        raise ForbiddenError("Not authorized to view other users' permissions")


# ============================================================================
# Catalog Routes
# ============================================================================

@router.get("", response_model=List[PermissionResponse])
async def list_permissions(
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    _actor: Annotated[Resolution, Depends(get_actor)],
    app: Optional[str] = None,
):
    """List the permission catalog, optionally for one app."""
    return [
        PermissionResponse.model_validate(p)
        for p in catalog.permissions
        if app is None or p.app == app
    ]


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    _actor: Annotated[Resolution, Depends(get_actor)],
):
    """List roles, highest hierarchy level first."""
    return [RoleResponse.model_validate(r) for r in catalog.roles]


@router.get("/roles/{role_id}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role_id: str,
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    _actor: Annotated[Resolution, Depends(require_permission("access", "manage_users"))],
):
    """Default permission ids of a role."""
    role = catalog.role(role_id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return RolePermissionsResponse(role_id=role.id, permission_ids=sorted(catalog.role_permission_ids(role.id)))


@router.get("/apps", response_model=List[AppSummaryResponse])
async def list_apps(
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    db: Annotated[AsyncSession, Depends(get_db)],
    _actor: Annotated[Resolution, Depends(require_permission("access", "manage_users"))],
):
    """Per-app permission count and number of users."""
    total_users = (await db.execute(select(func.count()).select_from(User))).scalar() or 0
    return [
        AppSummaryResponse(app=app, total_permissions=count, users_with_access=total_users)
        for app, count in catalog.apps_summary().items()
    ]


# ============================================================================
# Resolution Routes
# ============================================================================

@router.get("/effective", response_model=EffectivePermissionsResponse)
async def get_effective_permissions(
    user_id: str,
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    db: Annotated[AsyncSession, Depends(get_db)],
    actor: Annotated[Resolution, Depends(get_actor)],
):
    """Role and effective permission set of a user. Unknown users resolve to the fallback role."""
    _ensure_can_inspect(catalog, actor, user_id)
    return build_effective_response(catalog, await resolve(db, catalog, user_id))


@router.get("/check", response_model=bool)
async def check_permission(
    user_id: str,
    app: str,
    action: str,
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    db: Annotated[AsyncSession, Depends(get_db)],
    actor: Annotated[Resolution, Depends(get_actor)],
    resource: Optional[str] = None,
):
    """Whether a user may perform ``action`` on ``app`` (optionally on ``resource``)."""
    _ensure_can_inspect(catalog, actor, user_id)
    return await has_permission(db, catalog, user_id, app, action, resource)
