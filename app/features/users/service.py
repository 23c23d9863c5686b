"""
User access management: role changes, override edits, invitations and deletion.

Each operation follows the same shape: look up references, run the hierarchy
guard, then apply the mutation and its audit entries in the caller's session
and commit them as one unit. A rejected operation writes nothing.
"""
from collections.abc import Iterable
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.database.engine import commit_or_fail
from app.core.exceptions import InvalidInputError, StorageError, UserNotFoundError
from app.features.audit.recorder import AuditAction, record
from app.features.permissions.catalog import AccessCatalog, RoleDefinition
from app.features.permissions.hierarchy import (
    ensure_can_change_role,
    ensure_can_delete,
    ensure_can_edit_overrides,
    ensure_can_invite,
)
from app.features.permissions.models import UserRole
from app.features.permissions.overrides import clear_overrides, replace_overrides
from app.features.permissions.resolution import Resolution, resolve
from app.features.users.auth import AppwriteIdentityProvider
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def role_snapshot(role: RoleDefinition) -> dict:
    return {"role_id": role.id, "role_name": role.name, "hierarchy_level": role.hierarchy_level}


async def get_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise UserNotFoundError(f"User not found: {user_id}")
    return user


async def list_users(db: AsyncSession) -> list[tuple[User, Optional[UserRole]]]:
    """All users with their role row (None when on the fallback role), newest first."""
    result = await db.execute(
        select(User, UserRole)
        .outerjoin(UserRole, UserRole.user_id == User.id)
        .order_by(User.created_at.desc(), User.id.desc())
    )
    return [(user, assignment) for user, assignment in result.all()]


async def change_user_role(
    db: AsyncSession,
    catalog: AccessCatalog,
    actor: Resolution,
    user_id: str,
    role_id: str,
) -> Resolution:
    """
    Replace the role of ``user_id`` with ``role_id``.

    Raises:
        InvalidReferenceError: unknown role
        UserNotFoundError: unknown user
        SelfActionError: actor targets themself
        ForbiddenError: target user or new role at/above the actor's level
    """
    new_role = catalog.require_role(role_id)
    await get_user(db, user_id)
    target = await resolve(db, catalog, user_id)
    ensure_can_change_role(actor, target, new_role)

    assignment = await db.get(UserRole, user_id)
    if assignment is None:
        db.add(UserRole(user_id=user_id, role_id=new_role.id, assigned_by=actor.user_id))
    else:
        assignment.role_id = new_role.id
        assignment.assigned_by = actor.user_id
        assignment.assigned_at = utcnow()
    await db.flush()

    await record(
        db,
        AuditAction.UPDATE,
        resource_type="user_role",
        resource_id=user_id,
        old_data=role_snapshot(target.role),
        new_data=role_snapshot(new_role),
        performed_by=actor.user_id,
    )
    await commit_or_fail(db)

    log.info("User %s changed role of %s: %s -> %s", actor.user_id, user_id, target.role.name, new_role.name)
    return await resolve(db, catalog, user_id)


async def update_user_overrides(
    db: AsyncSession,
    catalog: AccessCatalog,
    actor: Resolution,
    user_id: str,
    grants: Iterable[str],
    revokes: Iterable[str],
) -> dict[str, bool]:
    """Guarded full replacement of a user's overrides."""
    await get_user(db, user_id)
    target = await resolve(db, catalog, user_id)
    ensure_can_edit_overrides(actor, target)

    current = await replace_overrides(db, catalog, user_id, grants, revokes, performed_by=actor.user_id)
    await commit_or_fail(db)

    log.info("User %s replaced overrides of %s (%d rows)", actor.user_id, user_id, len(current))
    return current


async def invite_user(
    db: AsyncSession,
    catalog: AccessCatalog,
    actor: Resolution,
    identity: AppwriteIdentityProvider,
    email: str,
    role_id: str,
    name: str = "",
) -> User:
    """
    Create a user and its role assignment in one commit.

    Until the commit, the new id is unknown to readers and resolves to the
    fallback role. If the commit fails the identity created upstream is removed.
    """
    role = catalog.require_role(role_id)
    ensure_can_invite(actor, role)

    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise InvalidInputError(f"A user with email {email} already exists")

    appwrite_id = await identity.invite(email)

    try:
        user = User(appwrite_id=appwrite_id, email=email, name=name, invited_by=actor.user_id)
        db.add(user)
        await db.flush()
        db.add(UserRole(user_id=user.id, role_id=role.id, assigned_by=actor.user_id))
        await db.flush()

        await record(
            db,
            AuditAction.INVITE,
            resource_type="user",
            resource_id=user.id,
            old_data=None,
            new_data={"email": email, **role_snapshot(role)},
            performed_by=actor.user_id,
        )
        await commit_or_fail(db)
    except (SQLAlchemyError, StorageError):
        await identity.delete(appwrite_id)
        raise

    log.info("User %s invited %s as %s (user %s)", actor.user_id, email, role.name, user.id)
    return user


async def delete_user(
    db: AsyncSession,
    catalog: AccessCatalog,
    actor: Resolution,
    identity: AppwriteIdentityProvider,
    user_id: str,
) -> None:
    """
    Remove a user, their overrides and their role row, each as an audited step.

    The local rows are committed before the identity is deleted upstream, so a
    failed commit leaves the account untouched. If the upstream delete fails
    afterwards, StorageError is raised and the identity can be removed by retrying
    against the identity provider.

    Raises:
        UserNotFoundError: unknown user
        SelfActionError: actor targets themself
        ForbiddenError: actor below the deletion floor, or target at/above actor
        StorageError: commit or identity removal failed
    """
    user = await get_user(db, user_id)
    target = await resolve(db, catalog, user_id)
    ensure_can_delete(actor, target)

    await clear_overrides(db, user_id, performed_by=actor.user_id)

    assignment = await db.get(UserRole, user_id)
    if assignment is not None:
        await db.delete(assignment)
        await record(
            db,
            AuditAction.DELETE,
            resource_type="user_role",
            resource_id=user_id,
            old_data=role_snapshot(target.role),
            new_data=None,
            performed_by=actor.user_id,
        )

    snapshot = {"email": user.email, "name": user.name, **role_snapshot(target.role)}
    appwrite_id = user.appwrite_id
    await db.delete(user)
    await record(
        db,
        AuditAction.DELETE,
        resource_type="user",
        resource_id=user_id,
        old_data=snapshot,
        new_data=None,
        performed_by=actor.user_id,
    )
    await db.flush()

    await commit_or_fail(db)
    log.info("User %s deleted user %s (%s)", actor.user_id, user_id, snapshot["email"])

    try:
        await identity.delete(appwrite_id)
    except StorageError:
        log.error("User %s removed locally but identity %s is still registered", user_id, appwrite_id)
        raise
