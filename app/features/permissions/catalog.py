"""
Immutable role and permission catalog.

The catalog is loaded once at startup (``load_catalog``) and passed explicitly
to the resolution engine and the hierarchy guard. Tests build synthetic
catalogs directly from ``RoleDefinition`` / ``PermissionDefinition`` values.
"""
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.exceptions import CatalogError, InvalidReferenceError
from app.features.permissions.models import Permission, Role, role_permissions as role_permissions_table
from app.utils import get_logger


log = get_logger(__name__)


KNOWN_APPS = ("access", "origin", "code", "stock")


@dataclass(frozen=True)
class RoleDefinition:
    id: str
    name: str
    display_name: str
    hierarchy_level: int
    description: Optional[str] = None
    is_system: bool = False
    is_super: bool = False


@dataclass(frozen=True)
class PermissionDefinition:
    id: str
    app: str
    action: str
    resource: Optional[str] = None
    display_name: str = ""
    description: Optional[str] = None

    @property
    def key(self) -> tuple[str, str, Optional[str]]:
        return (self.app, self.action, self.resource)


def fallback_role() -> RoleDefinition:
    """The virtual minimal role of users without a user_roles row."""
    return RoleDefinition(
        id="",
        name=config.FALLBACK_ROLE_NAME,
        display_name=config.FALLBACK_ROLE_DISPLAY_NAME,
        hierarchy_level=config.FALLBACK_HIERARCHY_LEVEL,
    )


class AccessCatalog:
    """
    Snapshot of roles, permissions and role default sets.

    Raises CatalogError on construction if ids or permission keys collide,
    if a role edge references an unknown id, or if more than one role is
    flagged as the super role.
    """

    def __init__(
        self,
        roles: Iterable[RoleDefinition],
        permissions: Iterable[PermissionDefinition],
        role_permissions: Mapping[str, Iterable[str]],
        fallback: Optional[RoleDefinition] = None,
    ):
        roles = list(roles)
        permissions = list(permissions)

        role_ids = Counter(r.id for r in roles)
        duplicates = [rid for rid, n in role_ids.items() if n > 1]
        if duplicates:
            raise CatalogError(f"Duplicate role ids: {duplicates}")
        if "" in role_ids:
            raise CatalogError("Role id '' is reserved for the fallback role")

        permission_ids = Counter(p.id for p in permissions)
        duplicates = [pid for pid, n in permission_ids.items() if n > 1]
        if duplicates:
            raise CatalogError(f"Duplicate permission ids: {duplicates}")

        keys = Counter(p.key for p in permissions)
        duplicates = [key for key, n in keys.items() if n > 1]
        if duplicates:
            raise CatalogError(f"Duplicate permission keys: {duplicates}")

        super_roles = [r.name for r in roles if r.is_super]
        if len(super_roles) > 1:
            raise CatalogError(f"More than one super role: {super_roles}")

        defaults: dict[str, frozenset[str]] = {}
        for role_id, ids in role_permissions.items():
            if role_id not in role_ids:
                raise CatalogError(f"Role permissions reference unknown role {role_id!r}")
            ids = frozenset(ids)
            unknown = ids - permission_ids.keys()
            if unknown:
                raise CatalogError(f"Role {role_id!r} references unknown permissions {sorted(unknown)}")
            defaults[role_id] = ids

        self._roles = MappingProxyType({r.id: r for r in roles})
        self._permissions = MappingProxyType({p.id: p for p in permissions})
        self._defaults = MappingProxyType(defaults)
        self._fallback = fallback or fallback_role()

        by_app_action: dict[tuple[str, str], list[PermissionDefinition]] = {}
        for p in permissions:
            by_app_action.setdefault((p.app, p.action), []).append(p)
        self._by_app_action = MappingProxyType({k: tuple(v) for k, v in by_app_action.items()})

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @property
    def fallback_role(self) -> RoleDefinition:
        return self._fallback

    @property
    def roles(self) -> list[RoleDefinition]:
        """All roles, highest hierarchy level first."""
        return sorted(self._roles.values(), key=lambda r: (-r.hierarchy_level, r.name))

    @property
    def super_role(self) -> Optional[RoleDefinition]:
        return next((r for r in self._roles.values() if r.is_super), None)

    def role(self, role_id: Optional[str]) -> Optional[RoleDefinition]:
        if not role_id:
            return None
        return self._roles.get(role_id)

    def require_role(self, role_id: str) -> RoleDefinition:
        role = self.role(role_id)
        if role is None:
            raise InvalidReferenceError(f"Unknown role: {role_id}")
        return role

    def role_permission_ids(self, role_id: str) -> frozenset[str]:
        """Default permission ids of a role; empty for the fallback or unknown roles."""
        return self._defaults.get(role_id, frozenset())

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    @property
    def permissions(self) -> list[PermissionDefinition]:
        return sorted(self._permissions.values(), key=lambda p: (p.app, p.action, p.resource or ""))

    def permission(self, permission_id: str) -> Optional[PermissionDefinition]:
        return self._permissions.get(permission_id)

    def has_permission_id(self, permission_id: str) -> bool:
        return permission_id in self._permissions

    def unknown_permission_ids(self, permission_ids: Iterable[str]) -> set[str]:
        return {pid for pid in permission_ids if pid not in self._permissions}

    def matching_permission_ids(self, app: str, action: str, resource: Optional[str] = None) -> frozenset[str]:
        """
        Catalog ids that satisfy a query for (app, action, resource).

        A query without resource matches only whole-app+action entries
        (resource None). A query with a resource matches the entry with that
        exact resource and the whole-app+action entry, since the broader grant
        implies the narrower one.
        """
        candidates = self._by_app_action.get((app, action), ())
        if resource is None:
            return frozenset(p.id for p in candidates if p.resource is None)
        return frozenset(p.id for p in candidates if p.resource is None or p.resource == resource)

    def apps_summary(self) -> dict[str, int]:
        """Permission count per app, known apps first."""
        counts = Counter(p.app for p in self._permissions.values())
        ordered = {app: counts.get(app, 0) for app in KNOWN_APPS}
        for app in sorted(counts):
            ordered.setdefault(app, counts[app])
        return ordered

    def __repr__(self) -> str:
        return f"<AccessCatalog(roles={len(self._roles)}, permissions={len(self._permissions)})>"


async def load_catalog(db: AsyncSession) -> AccessCatalog:
    """Read roles, permissions and role_permissions into an AccessCatalog."""
    role_rows = (await db.execute(select(Role))).scalars().all()
    permission_rows = (await db.execute(select(Permission))).scalars().all()
    edge_rows = (await db.execute(select(role_permissions_table.c.role_id, role_permissions_table.c.permission_id))).all()

    defaults: dict[str, set[str]] = {}
    for role_id, permission_id in edge_rows:
        defaults.setdefault(role_id, set()).add(permission_id)

    catalog = AccessCatalog(
        roles=[
            RoleDefinition(
                id=r.id,
                name=r.name,
                display_name=r.display_name,
                hierarchy_level=r.hierarchy_level,
                description=r.description,
                is_system=r.is_system,
                is_super=r.is_super,
            )
            for r in role_rows
        ],
        permissions=[
            PermissionDefinition(
                id=p.id,
                app=p.app,
                action=p.action,
                resource=p.resource,
                display_name=p.display_name,
                description=p.description,
            )
            for p in permission_rows
        ],
        role_permissions=defaults,
    )
    log.info("Loaded %r", catalog)
    return catalog
