"""
Hierarchy authorization guard.

Comparisons are strict: an actor may only assign roles, and only act on
users, whose hierarchy level is below their own. Self-targeting checks run
first and raise SelfActionError regardless of levels.

Every ``ensure_*`` function either returns None or raises before any
mutation is attempted.
"""
from app.core import config
from app.core.exceptions import ForbiddenError, SelfActionError
from app.features.permissions.catalog import RoleDefinition
from app.features.permissions.resolution import Resolution
from app.utils import get_logger


log = get_logger(__name__)


def can_assign(actor_level: int, target_role_level: int) -> bool:
    """True if an actor at ``actor_level`` may hand out a role at ``target_role_level``."""
    return target_role_level < actor_level


def can_act_on(actor_level: int, target_user_level: int) -> bool:
    """True if an actor at ``actor_level`` may modify or remove a user at ``target_user_level``."""
    return target_user_level < actor_level


def _deny(actor: Resolution, target: str, operation: str, message: str) -> ForbiddenError:
    log.info(
        "Denied %s of %s for actor %s (level %d): %s",
        operation, target, actor.user_id, actor.hierarchy_level, message,
    )
    return ForbiddenError(message)


def _ensure_not_self(actor: Resolution, target_user_id: str, operation: str, message: str) -> None:
    if actor.user_id == target_user_id:
        log.info("Denied %s for actor %s: self-targeting", operation, actor.user_id)
        raise SelfActionError(message)


def ensure_can_change_role(actor: Resolution, target: Resolution, new_role: RoleDefinition) -> None:
    _ensure_not_self(actor, target.user_id, "role change", "Cannot change your own role")
    if not can_act_on(actor.hierarchy_level, target.hierarchy_level):
        raise _deny(actor, target.user_id, "role change", "Cannot change the role of a user at or above your own level")
    if not can_assign(actor.hierarchy_level, new_role.hierarchy_level):
        raise _deny(actor, target.user_id, "role change", "Cannot assign a role at or above your own level")


def ensure_can_edit_overrides(actor: Resolution, target: Resolution) -> None:
    _ensure_not_self(actor, target.user_id, "override change", "Cannot change your own permissions")
    if not can_act_on(actor.hierarchy_level, target.hierarchy_level):
        raise _deny(actor, target.user_id, "override change", "Cannot change permissions of a user at or above your own level")


def ensure_can_invite(actor: Resolution, new_role: RoleDefinition) -> None:
    if not can_assign(actor.hierarchy_level, new_role.hierarchy_level):
        raise _deny(actor, f"role {new_role.name}", "invite", "Cannot assign a role at or above your own level")


def ensure_can_delete(actor: Resolution, target: Resolution, min_level: int | None = None) -> None:
    """
    Deletion requires, in order: a different user, an actor at or above the
    deletion floor, and a target strictly below the actor.
    """
    floor = config.DELETE_MIN_LEVEL if min_level is None else min_level
    _ensure_not_self(actor, target.user_id, "delete", "Cannot delete your own account")
    if actor.hierarchy_level < floor:
        raise _deny(actor, target.user_id, "delete", f"Deleting users requires hierarchy level {floor} or higher")
    if not can_act_on(actor.hierarchy_level, target.hierarchy_level):
        raise _deny(actor, target.user_id, "delete", "Cannot delete a user at or above your own level")
