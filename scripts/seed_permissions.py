"""
Seed script to populate the permission catalog and the role hierarchy.

Run this script after database initialization to create:
- The permission catalog for every application
- The six system roles and their hierarchy levels
- Default role-permission assignments

Re-running is safe: existing permissions and roles are left untouched.
With --prune, roles absent from DEFAULT_ROLES are removed; system roles are
never removed.

Usage:
    uv run python -m scripts.seed_permissions [--prune]
"""
import argparse
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.core.exceptions import CatalogError
from app.features.permissions.models import Permission, Role
from app.utils import get_logger


log = get_logger(__name__)


# (app, action, resource, display name, description)
DEFAULT_PERMISSIONS = [
    # Access (this platform)
    ("access", "view_dashboard", None, "View dashboard", "Open the access dashboard"),
    ("access", "manage_users", None, "Manage users", "Invite users, change roles and delete accounts"),
    ("access", "manage_permissions", None, "Manage permissions", "Grant or revoke individual permissions"),
    ("access", "view_audit_logs", None, "View audit logs", "Read the audit trail"),

    # Origin
    ("origin", "view", None, "View origin records", None),
    ("origin", "edit", None, "Edit origin records", None),
    ("origin", "approve", None, "Approve origin records", None),
    ("origin", "export", None, "Export origin data", None),

    # Code
    ("code", "view", None, "View product codes", None),
    ("code", "edit", None, "Edit product codes", None),
    ("code", "generate", None, "Generate descriptions", "Generate product code descriptions"),
    ("code", "approve", None, "Approve descriptions", None),

    # Stock
    ("stock", "view", None, "View stock", None),
    ("stock", "edit", None, "Edit stock", "Edit every stock record"),
    ("stock", "edit", "inventory", "Edit inventory counts", "Edit inventory counts only"),
    ("stock", "export", None, "Export stock", None),
]


def permission_name(app: str, action: str, resource: str | None) -> str:
    return f"{app}:{action}" + (f":{resource}" if resource else "")


VIEW_ALL = ["access:view_dashboard", "origin:view", "code:view", "stock:view"]

DEFAULT_ROLES = {
    "super_admin": {
        "display_name": "Super Admin",
        "description": "Unrestricted access to every application",
        "hierarchy_level": 100,
        "is_super": True,
        "permissions": "ALL",
    },
    "admin": {
        "display_name": "Admin",
        "description": "Manages users, permissions and every application",
        "hierarchy_level": 80,
        "permissions": "ALL",
    },
    "approver": {
        "display_name": "Approver",
        "description": "Approves content across applications",
        "hierarchy_level": 60,
        "permissions": VIEW_ALL + ["origin:approve", "code:approve", "origin:export", "stock:export"],
    },
    "quality_assurance": {
        "display_name": "Quality Assurance",
        "description": "Reviews and corrects content",
        "hierarchy_level": 50,
        "permissions": VIEW_ALL + ["origin:edit", "code:edit", "access:view_audit_logs"],
    },
    "editor": {
        "display_name": "Editor",
        "description": "Creates and edits content",
        "hierarchy_level": 40,
        "permissions": VIEW_ALL + ["origin:edit", "code:edit", "code:generate", "stock:edit:inventory"],
    },
    "viewer": {
        "display_name": "Viewer",
        "description": "Read-only access",
        "hierarchy_level": 10,
        "permissions": VIEW_ALL,
    },
}


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create default permissions.

    Returns:
        Dictionary mapping permission names (app:action[:resource]) to Permission objects
    """
    log.info("Creating default permissions...")
    permissions_map = {}

    for app, action, resource, display_name, description in DEFAULT_PERMISSIONS:
        name = permission_name(app, action, resource)
        stmt = select(Permission).where(
            Permission.app == app,
            Permission.action == action,
            Permission.resource.is_(None) if resource is None else Permission.resource == resource,
        )
        existing = (await db.execute(stmt)).scalars().first()

        if existing:
            log.debug("Permission '%s' already exists, skipping", name)
            permissions_map[name] = existing
            continue

        permission = Permission(
            app=app,
            action=action,
            resource=resource,
            display_name=display_name,
            description=description,
        )
        db.add(permission)
        permissions_map[name] = permission
        log.info("Created permission: %s", name)

    await db.commit()
    log.info("Catalog holds %d permissions", len(permissions_map))
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]):
    """
    Create default roles and assign permissions.

    Args:
        db: Database session
        permissions_map: Dictionary of permission name -> Permission object
    """
    log.info("Creating default roles...")

    for role_name, role_config in DEFAULT_ROLES.items():
        existing = (await db.execute(select(Role).where(Role.name == role_name))).scalars().first()
        if existing:
            log.debug("Role '%s' already exists, skipping", role_name)
            continue

        role = Role(
            name=role_name,
            display_name=role_config["display_name"],
            description=role_config["description"],
            hierarchy_level=role_config["hierarchy_level"],
            is_system=True,
            is_super=role_config.get("is_super", False),
        )

        if role_config["permissions"] == "ALL":
            role.permissions = list(permissions_map.values())
        else:
            role_permissions = []
            for perm_name in role_config["permissions"]:
                if perm_name in permissions_map:
                    role_permissions.append(permissions_map[perm_name])
                else:
                    log.warning("Permission '%s' not found for role '%s'", perm_name, role_name)
            role.permissions = role_permissions

        db.add(role)
        log.info(
            "Created role '%s' (level %d) with %d permissions",
            role_name, role.hierarchy_level, len(role.permissions),
        )

    await db.commit()
    log.info("Default roles created successfully")


async def prune_roles(db: AsyncSession) -> list[str]:
    """
    Remove roles no longer present in DEFAULT_ROLES.

    Raises:
        CatalogError: if a role to remove is a system role
    """
    stale = (
        await db.execute(select(Role).where(Role.name.not_in(list(DEFAULT_ROLES))))
    ).scalars().all()

    protected = [role.name for role in stale if role.is_system]
    if protected:
        raise CatalogError(f"System roles cannot be deleted: {protected}")

    for role in stale:
        await db.delete(role)
        log.info("Removed role '%s'", role.name)
    await db.commit()
    return [role.name for role in stale]


async def main(prune: bool = False):
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            permissions_map = await seed_permissions(db)
            await seed_roles(db, permissions_map)
            if prune:
                await prune_roles(db)

            log.info("Permission seeding completed successfully!")
            for role_name, role_config in DEFAULT_ROLES.items():
                log.info("  - %s (%d): %s", role_name, role_config["hierarchy_level"], role_config["description"])

        except Exception as e:
            log.error("Error seeding permissions: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the role hierarchy and permission catalog")
    parser.add_argument("--prune", action="store_true", help="Remove roles missing from the default set")
    args = parser.parse_args()
    asyncio.run(main(prune=args.prune))
