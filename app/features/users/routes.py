"""
User feature routes: profile, role assignment, overrides, invitations, deletion.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.catalog import AccessCatalog
from app.features.permissions.dependencies import get_catalog, require_permission
from app.features.permissions.models import UserRole
from app.features.permissions.resolution import Resolution, get_overrides, resolve
from app.features.permissions.routes import build_effective_response
from app.features.permissions.schemas import (
    EffectivePermissionsResponse,
    OverrideResponse,
    RoleResponse,
    UpdateOverridesRequest,
)
from app.features.users import service
from app.features.users.auth import AppwriteIdentityProvider, get_identity_provider
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.users.schemas import (
    InviteUser,
    InviteUserResponse,
    UpdateUserRole,
    UserDetail,
    UserResponse,
    UserWithRole,
)


router = APIRouter(tags=["users"])

manage_users = require_permission("access", "manage_users")
manage_permissions = require_permission("access", "manage_permissions")


def _user_with_role(catalog: AccessCatalog, user: User, assignment: UserRole | None) -> dict:
    role = catalog.role(assignment.role_id if assignment else None) or catalog.fallback_role
    return dict(
        id=user.id,
        email=user.email,
        name=user.name,
        is_active=user.is_active,
        role=RoleResponse.model_validate(role),
        assigned_at=assignment.assigned_at if assignment else user.created_at,
        created_at=user.created_at,
    )


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.get("/me/permissions", response_model=EffectivePermissionsResponse)
async def get_my_permissions(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
):
    """Role and effective permissions of the current user."""
    return build_effective_response(catalog, await resolve(db, catalog, user.id))


@router.get("/", response_model=list[UserWithRole])
async def list_users(
    _actor: Annotated[Resolution, Depends(manage_users)],
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
):
    """List users with their resolved role."""
    rows = await service.list_users(db)
    return [UserWithRole(**_user_with_role(catalog, user, assignment)) for user, assignment in rows]


@router.post("/invite", response_model=InviteUserResponse, status_code=status.HTTP_201_CREATED)
async def invite_user(
    body: InviteUser,
    actor: Annotated[Resolution, Depends(manage_users)],
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    identity: Annotated[AppwriteIdentityProvider, Depends(get_identity_provider)],
):
    """Invite a user by email with an initial role below the actor's level."""
    user = await service.invite_user(db, catalog, actor, identity, body.email, body.role_id, body.name)
    return InviteUserResponse(user_id=user.id)


@router.get("/{user_id}", response_model=UserDetail)
async def get_user(
    user_id: str,
    _actor: Annotated[Resolution, Depends(manage_users)],
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
):
    """User detail with role and the role's default permission ids."""
    user = await service.get_user(db, user_id)
    assignment = await db.get(UserRole, user_id)
    detail = _user_with_role(catalog, user, assignment)
    return UserDetail(
        **detail,
        role_permission_ids=sorted(catalog.role_permission_ids(detail["role"].id)),
    )


@router.put("/{user_id}/role", response_model=RoleResponse)
async def change_user_role(
    user_id: str,
    body: UpdateUserRole,
    actor: Annotated[Resolution, Depends(manage_users)],
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
):
    """Replace a user's role. Returns the newly assigned role."""
    resolution = await service.change_user_role(db, catalog, actor, user_id, body.role_id)
    return RoleResponse.model_validate(resolution.role)


@router.get("/{user_id}/permissions", response_model=list[OverrideResponse])
async def list_user_overrides(
    user_id: str,
    _actor: Annotated[Resolution, Depends(manage_permissions)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """List a user's override rows."""
    await service.get_user(db, user_id)
    overrides = await get_overrides(db, user_id)
    return [OverrideResponse(permission_id=pid, granted=granted) for pid, granted in sorted(overrides.items())]


@router.put("/{user_id}/permissions", response_model=list[OverrideResponse])
async def replace_user_overrides(
    user_id: str,
    body: UpdateOverridesRequest,
    actor: Annotated[Resolution, Depends(manage_permissions)],
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
):
    """Replace all of a user's overrides with the given grants and revokes."""
    current = await service.update_user_overrides(db, catalog, actor, user_id, body.grants, body.revokes)
    return [OverrideResponse(permission_id=pid, granted=granted) for pid, granted in sorted(current.items())]


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    actor: Annotated[Resolution, Depends(manage_users)],
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    identity: Annotated[AppwriteIdentityProvider, Depends(get_identity_provider)],
):
    """Delete a user account."""
    await service.delete_user(db, catalog, actor, identity, user_id)
    return {"message": "User deleted successfully"}
