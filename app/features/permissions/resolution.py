"""
Permission resolution engine.

Effective permissions are a pure function of the role default set and the
user's override rows:

    effective = role_defaults ∪ grants \\ revokes

The distinguished super role bypasses the computation entirely. Unknown users
and users without a role row resolve to the catalog's fallback role; a lookup
never fails because the identity is unknown.
"""
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.catalog import AccessCatalog, RoleDefinition
from app.features.permissions.models import UserRole, UserPermission
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Role and effective permission set of one user at query time."""
    user_id: str
    role: RoleDefinition
    role_permission_ids: frozenset[str]
    granted_ids: frozenset[str]
    revoked_ids: frozenset[str]
    effective_permission_ids: frozenset[str]

    @property
    def hierarchy_level(self) -> int:
        return self.role.hierarchy_level

    @property
    def is_super(self) -> bool:
        return self.role.is_super

    def allows(self, catalog: AccessCatalog, app: str, action: str, resource: Optional[str] = None) -> bool:
        if self.is_super:
            return True
        return not self.effective_permission_ids.isdisjoint(
            catalog.matching_permission_ids(app, action, resource)
        )


def combine(role_permission_ids: frozenset[str], overrides: Mapping[str, bool]) -> frozenset[str]:
    """Apply overrides to a role default set. An override always wins over the default."""
    granted = {pid for pid, is_grant in overrides.items() if is_grant}
    revoked = {pid for pid, is_grant in overrides.items() if not is_grant}
    return frozenset((role_permission_ids | granted) - revoked)


def resolve_role(catalog: AccessCatalog, user_id: str, role_id: Optional[str]) -> RoleDefinition:
    role = catalog.role(role_id)
    if role is None:
        if role_id:
            log.warning("User %s references role %s missing from catalog, using fallback", user_id, role_id)
        return catalog.fallback_role
    return role


def resolve_rows(
    catalog: AccessCatalog,
    user_id: str,
    role_id: Optional[str],
    overrides: Mapping[str, bool],
) -> Resolution:
    """
    Build a Resolution from raw rows.

    Overrides on permission ids absent from the catalog are ignored.
    """
    role = resolve_role(catalog, user_id, role_id)
    known = {pid: granted for pid, granted in overrides.items() if catalog.has_permission_id(pid)}
    if len(known) != len(overrides):
        log.debug("Ignoring %d stale overrides for user %s", len(overrides) - len(known), user_id)

    defaults = catalog.role_permission_ids(role.id)
    return Resolution(
        user_id=user_id,
        role=role,
        role_permission_ids=defaults,
        granted_ids=frozenset(pid for pid, granted in known.items() if granted),
        revoked_ids=frozenset(pid for pid, granted in known.items() if not granted),
        effective_permission_ids=combine(defaults, known),
    )


async def get_role_id(db: AsyncSession, user_id: str) -> Optional[str]:
    result = await db.execute(select(UserRole.role_id).where(UserRole.user_id == user_id))
    return result.scalar_one_or_none()


async def get_overrides(db: AsyncSession, user_id: str) -> dict[str, bool]:
    """Override rows of a user as {permission_id: granted}."""
    result = await db.execute(
        select(UserPermission.permission_id, UserPermission.granted).where(UserPermission.user_id == user_id)
    )
    return {permission_id: granted for permission_id, granted in result.all()}


async def resolve(db: AsyncSession, catalog: AccessCatalog, user_id: str) -> Resolution:
    """Compute the role and effective permission set of ``user_id``."""
    role_id = await get_role_id(db, user_id)
    overrides = await get_overrides(db, user_id)
    return resolve_rows(catalog, user_id, role_id, overrides)


async def has_permission(
    db: AsyncSession,
    catalog: AccessCatalog,
    user_id: str,
    app: str,
    action: str,
    resource: Optional[str] = None,
) -> bool:
    """
    Check if a user may perform ``action`` on ``app`` (optionally scoped to ``resource``).

    The super role is checked before overrides are read.
    """
    role = resolve_role(catalog, user_id, await get_role_id(db, user_id))
    if role.is_super:
        log.debug("User %s holds the super role - granted %s:%s", user_id, app, action)
        return True

    overrides = await get_overrides(db, user_id)
    resolution = resolve_rows(catalog, user_id, role.id or None, overrides)
    allowed = resolution.allows(catalog, app, action, resource)
    log.debug(
        "User %s %s %s:%s%s",
        user_id, "granted" if allowed else "denied", app, action, f" on {resource}" if resource else "",
    )
    return allowed
