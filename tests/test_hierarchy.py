import pytest

from app.core.exceptions import ForbiddenError, SelfActionError
from app.features.permissions.hierarchy import (
    can_act_on,
    can_assign,
    ensure_can_change_role,
    ensure_can_delete,
    ensure_can_edit_overrides,
    ensure_can_invite,
)
from app.features.permissions.resolution import resolve_rows


def as_role(catalog, user_id, role_id):
    return resolve_rows(catalog, user_id, role_id, {})


def test_comparisons_are_strict():
    assert not can_assign(50, 50)
    assert can_assign(50, 49)
    assert not can_assign(50, 51)
    assert not can_act_on(60, 60)
    assert can_act_on(60, 40)


def test_admin_changes_lower_user_to_lower_role(catalog):
    admin = as_role(catalog, "admin", "r-admin")
    editor = as_role(catalog, "editor", "r-editor")
    ensure_can_change_role(admin, editor, catalog.require_role("r-approver"))


def test_cannot_assign_own_level(catalog):
    admin = as_role(catalog, "admin", "r-admin")
    editor = as_role(catalog, "editor", "r-editor")
    with pytest.raises(ForbiddenError):
        ensure_can_change_role(admin, editor, catalog.require_role("r-admin"))


def test_cannot_change_peer(catalog):
    admin = as_role(catalog, "admin", "r-admin")
    other_admin = as_role(catalog, "admin-2", "r-admin")
    with pytest.raises(ForbiddenError):
        ensure_can_change_role(admin, other_admin, catalog.require_role("r-viewer"))


def test_self_role_change_rejected_before_levels(catalog):
    admin = as_role(catalog, "admin", "r-admin")
    with pytest.raises(SelfActionError):
        ensure_can_change_role(admin, admin, catalog.require_role("r-viewer"))


def test_override_edits(catalog):
    qa = as_role(catalog, "qa", "r-qa")
    editor = as_role(catalog, "editor", "r-editor")
    approver = as_role(catalog, "approver", "r-approver")

    ensure_can_edit_overrides(qa, editor)
    with pytest.raises(ForbiddenError):
        ensure_can_edit_overrides(qa, approver)
    with pytest.raises(SelfActionError):
        ensure_can_edit_overrides(qa, qa)


def test_invite_limited_to_lower_roles(catalog):
    qa = as_role(catalog, "qa", "r-qa")
    ensure_can_invite(qa, catalog.require_role("r-editor"))
    with pytest.raises(ForbiddenError):
        ensure_can_invite(qa, catalog.require_role("r-qa"))


def test_delete_requires_floor_and_higher_level(catalog):
    admin = as_role(catalog, "admin", "r-admin")
    approver = as_role(catalog, "approver", "r-approver")
    editor = as_role(catalog, "editor", "r-editor")

    ensure_can_delete(admin, approver)
    with pytest.raises(ForbiddenError):
        ensure_can_delete(approver, editor)
    ensure_can_delete(approver, editor, min_level=60)
    with pytest.raises(SelfActionError):
        ensure_can_delete(admin, admin)
