"""
Override store: per-user grant/revoke exceptions layered on role defaults.

Writes are full replacements. Existing rows for the user are deleted and the
new set inserted in the caller's transaction, together with the audit entry;
the caller commits.
"""
from collections.abc import Iterable, Mapping
from typing import Optional
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidInputError, InvalidReferenceError
from app.features.audit.recorder import AuditAction, record
from app.features.permissions.catalog import AccessCatalog
from app.features.permissions.models import UserPermission
from app.features.permissions.resolution import get_overrides
from app.utils import get_logger


log = get_logger(__name__)


def describe(overrides: Mapping[str, bool]) -> dict[str, list[str]]:
    """Audit/JSON form of an override mapping."""
    return {
        "grants": sorted(pid for pid, granted in overrides.items() if granted),
        "revokes": sorted(pid for pid, granted in overrides.items() if not granted),
    }


def validate_override_sets(
    catalog: AccessCatalog,
    grants: Iterable[str],
    revokes: Iterable[str],
) -> tuple[frozenset[str], frozenset[str]]:
    """
    Normalise grant/revoke ids, rejecting overlap and unknown permissions.

    Raises:
        InvalidInputError: an id appears in both sets
        InvalidReferenceError: an id is not in the permission catalog
    """
    grants, revokes = frozenset(grants), frozenset(revokes)

    overlap = grants & revokes
    if overlap:
        raise InvalidInputError(f"Permissions cannot be both granted and revoked: {sorted(overlap)}")

    unknown = catalog.unknown_permission_ids(grants | revokes)
    if unknown:
        raise InvalidReferenceError(f"Unknown permissions: {sorted(unknown)}")

    return grants, revokes


async def replace_overrides(
    db: AsyncSession,
    catalog: AccessCatalog,
    user_id: str,
    grants: Iterable[str],
    revokes: Iterable[str],
    performed_by: Optional[str],
) -> dict[str, bool]:
    """
    Replace every override row of ``user_id`` with the given grants and revokes.

    Returns the new overrides as {permission_id: granted}. Applying the same
    sets twice leaves the same rows behind.
    """
    grants, revokes = validate_override_sets(catalog, grants, revokes)
    previous = await get_overrides(db, user_id)

    await db.execute(delete(UserPermission).where(UserPermission.user_id == user_id))
    db.add_all(
        [UserPermission(user_id=user_id, permission_id=pid, granted=True, granted_by=performed_by) for pid in grants]
        + [UserPermission(user_id=user_id, permission_id=pid, granted=False, granted_by=performed_by) for pid in revokes]
    )
    await db.flush()

    current = {pid: True for pid in grants} | {pid: False for pid in revokes}
    await record(
        db,
        AuditAction.UPDATE,
        resource_type="user_permissions",
        resource_id=user_id,
        old_data=describe(previous),
        new_data=describe(current),
        performed_by=performed_by,
    )
    log.debug("Replaced overrides for user %s: %d grants, %d revokes", user_id, len(grants), len(revokes))
    return current


async def clear_overrides(db: AsyncSession, user_id: str, performed_by: Optional[str]) -> dict[str, bool]:
    """Delete every override row of ``user_id`` as an audited step. Returns the removed overrides."""
    previous = await get_overrides(db, user_id)
    await db.execute(delete(UserPermission).where(UserPermission.user_id == user_id))
    await record(
        db,
        AuditAction.DELETE,
        resource_type="user_permissions",
        resource_id=user_id,
        old_data=describe(previous),
        new_data=None,
        performed_by=performed_by,
    )
    return previous
