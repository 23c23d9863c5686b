"""
FastAPI dependencies for catalog access and route protection.
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import CatalogError, ForbiddenError
from app.features.permissions.catalog import AccessCatalog
from app.features.permissions.resolution import Resolution, resolve
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def get_catalog(request: Request) -> AccessCatalog:
    """The catalog loaded at startup and kept on ``app.state``."""
    catalog = getattr(request.app.state, "catalog", None)
    if catalog is None:
        raise CatalogError("Access catalog not loaded")
    return catalog


async def get_actor(
    db: Annotated[AsyncSession, Depends(get_db)],
    catalog: Annotated[AccessCatalog, Depends(get_catalog)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> Resolution:
    """Resolution of the authenticated principal."""
    return await resolve(db, catalog, current_user.id)


def require_permission(app: str, action: str, resource: Optional[str] = None):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.put("/{user_id}/role")
        async def change_role(
            actor: Resolution = Depends(require_permission("access", "manage_users"))
        ):
            ...

    Returns:
        Dependency function returning the actor's Resolution if allowed

    Raises:
        ForbiddenError: if the actor lacks the permission
    """
    async def permission_dependency(
        catalog: Annotated[AccessCatalog, Depends(get_catalog)],
        actor: Annotated[Resolution, Depends(get_actor)],
    ) -> Resolution:
        if not actor.allows(catalog, app, action, resource):
            log.info("User %s denied %s:%s", actor.user_id, app, action)
            raise ForbiddenError(f"Permission denied: {action} on {app}")
        return actor

    return permission_dependency
