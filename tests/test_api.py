import pytest
from sqlalchemy import select

from app.core import config
from app.core.exceptions import StorageError
from app.features.audit.models import AuditLog
from app.features.permissions.models import UserPermission, UserRole
from app.features.users import service


@pytest.mark.asyncio
async def test_unauthenticated_request_is_rejected(client):
    response = await client.get("/users/me")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_me_permissions_for_user_without_role(client, users, principal):
    principal.user = users["nobody"]
    response = await client.get("/users/me/permissions")
    assert response.status_code == 200
    body = response.json()
    assert body["role"]["id"] == ""
    assert body["role"]["name"] == "viewer"
    assert body["effective_permissions"] == []
    assert body["bypasses_checks"] is False


@pytest.mark.asyncio
async def test_check_with_granted_override(client, users, principal, session_factory):
    editor = users["editor"]
    principal.user = editor
    params = {"user_id": editor.id, "app": "access", "action": "manage_users"}

    assert (await client.get("/permissions/check", params=params)).json() is False

    async with session_factory() as db:
        db.add(UserPermission(user_id=editor.id, permission_id="p-manage-users", granted=True))
        await db.commit()

    assert (await client.get("/permissions/check", params=params)).json() is True


@pytest.mark.asyncio
async def test_super_role_passes_unknown_checks(client, users, principal):
    root = users["super"]
    principal.user = root
    response = await client.get(
        "/permissions/check",
        params={"user_id": root.id, "app": "unknown", "action": "anything"},
    )
    assert response.status_code == 200
    assert response.json() is True


@pytest.mark.asyncio
async def test_inspecting_others_requires_manage_users(client, users, principal):
    principal.user = users["editor"]
    response = await client.get("/permissions/effective", params={"user_id": users["qa"].id})
    assert response.status_code == 403

    principal.user = users["admin"]
    response = await client.get("/permissions/effective", params={"user_id": users["qa"].id})
    assert response.status_code == 200
    assert response.json()["role"]["name"] == "quality_assurance"


@pytest.mark.asyncio
async def test_catalog_listing(client, users, principal):
    principal.user = users["viewer"]
    roles = (await client.get("/permissions/roles")).json()
    assert [r["hierarchy_level"] for r in roles] == [100, 80, 60, 50, 40, 10]

    stock = (await client.get("/permissions", params={"app": "stock"})).json()
    assert {p["id"] for p in stock} == {"p-stock-edit", "p-stock-edit-inv"}

    assert (await client.get("/permissions/apps")).status_code == 403


@pytest.mark.asyncio
async def test_role_permissions_lookup(client, users, principal):
    principal.user = users["admin"]
    response = await client.get("/permissions/roles/r-viewer/permissions")
    assert response.json() == {"role_id": "r-viewer", "permission_ids": ["p-code-view", "p-origin-view"]}
    assert (await client.get("/permissions/roles/r-missing/permissions")).status_code == 404


@pytest.mark.asyncio
async def test_change_role(client, users, principal, session_factory):
    principal.user = users["admin"]
    response = await client.put(f"/users/{users['approver'].id}/role", json={"role_id": "r-editor"})
    assert response.status_code == 200
    assert response.json()["name"] == "editor"

    async with session_factory() as db:
        entries = (await db.execute(select(AuditLog))).scalars().all()
    assert [(e.action, e.resource_type) for e in entries] == [("update", "user_role")]


@pytest.mark.asyncio
async def test_change_role_rejections(client, users, principal):
    principal.user = users["admin"]
    target = users["editor"].id

    assert (await client.put(f"/users/{users['admin'].id}/role", json={"role_id": "r-viewer"})).status_code == 403
    assert (await client.put(f"/users/{target}/role", json={"role_id": "r-admin"})).status_code == 403
    assert (await client.put(f"/users/{target}/role", json={"role_id": "r-missing"})).status_code == 400
    assert (await client.put("/users/missing/role", json={"role_id": "r-viewer"})).status_code == 404

    principal.user = users["qa"]
    assert (await client.put(f"/users/{target}/role", json={"role_id": "r-viewer"})).status_code == 403


@pytest.mark.asyncio
async def test_list_and_get_users(client, users, principal):
    principal.user = users["admin"]
    listing = (await client.get("/users/")).json()
    roles = {u["email"]: u["role"]["name"] for u in listing}
    assert roles["nobody@example.com"] == "viewer"
    assert roles["qa@example.com"] == "quality_assurance"

    detail = (await client.get(f"/users/{users['editor'].id}")).json()
    assert detail["role"]["id"] == "r-editor"
    assert "p-origin-edit" in detail["role_permission_ids"]
    assert (await client.get("/users/missing")).status_code == 404


@pytest.mark.asyncio
async def test_override_endpoints(client, users, principal):
    principal.user = users["admin"]
    target = users["editor"].id

    response = await client.put(
        f"/users/{target}/permissions",
        json={"grants": ["p-audit"], "revokes": ["p-origin-edit"]},
    )
    assert response.status_code == 200
    assert response.json() == [
        {"permission_id": "p-audit", "granted": True},
        {"permission_id": "p-origin-edit", "granted": False},
    ]
    assert (await client.get(f"/users/{target}/permissions")).json() == response.json()

    overlap = await client.put(f"/users/{target}/permissions", json={"grants": ["p-audit"], "revokes": ["p-audit"]})
    assert overlap.status_code == 400
    unknown = await client.put(f"/users/{target}/permissions", json={"grants": ["p-nope"], "revokes": []})
    assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_invite_endpoint(client, users, principal, identity):
    principal.user = users["admin"]
    response = await client.post(
        "/users/invite",
        json={"email": "fresh@example.com", "role_id": "r-editor", "name": "Fresh"},
    )
    assert response.status_code == 201
    user_id = response.json()["user_id"]
    assert identity.invited == ["fresh@example.com"]

    detail = (await client.get(f"/users/{user_id}")).json()
    assert detail["role"]["name"] == "editor"

    invalid = await client.post("/users/invite", json={"email": "not-an-email", "role_id": "r-editor"})
    assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_delete_endpoint(client, users, principal, identity):
    principal.user = users["approver"]
    assert (await client.delete(f"/users/{users['editor'].id}")).status_code == 403

    principal.user = users["admin"]
    response = await client.delete(f"/users/{users['editor'].id}")
    assert response.status_code == 200
    assert identity.deleted == ["aw-editor"]
    assert (await client.get(f"/users/{users['editor'].id}")).status_code == 404


@pytest.mark.asyncio
async def test_audit_endpoint(client, users, principal):
    principal.user = users["admin"]
    await client.put(f"/users/{users['editor'].id}/role", json={"role_id": "r-viewer"})

    entries = (await client.get("/audit", params={"filter": "user_role"})).json()
    assert len(entries) == 1
    assert entries[0]["resource_id"] == users["editor"].id
    assert entries[0]["new_data"]["role_name"] == "viewer"

    principal.user = users["editor"]
    assert (await client.get("/audit")).status_code == 403


@pytest.mark.asyncio
async def test_rejections_carry_error_code(client, users, principal):
    principal.user = users["admin"]

    response = await client.put(f"/users/{users['admin'].id}/role", json={"role_id": "r-viewer"})
    assert response.status_code == 403
    assert response.json()["code"] == "self_action"

    response = await client.put(f"/users/{users['super'].id}/role", json={"role_id": "r-viewer"})
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"

    response = await client.put("/users/missing/role", json={"role_id": "r-viewer"})
    assert response.json()["code"] == "user_not_found"


@pytest.mark.asyncio
async def test_storage_failure_returns_500_without_audit(client, users, principal, session_factory, monkeypatch):
    async def failing_commit(session):
        await session.rollback()
        raise StorageError("Storage failure, no changes were applied")

    monkeypatch.setattr(service, "commit_or_fail", failing_commit)
    principal.user = users["admin"]
    target_id = users["editor"].id

    response = await client.put(f"/users/{target_id}/role", json={"role_id": "r-viewer"})
    assert response.status_code == 500
    assert response.json()["code"] == "storage_error"

    async with session_factory() as db:
        assert (await db.execute(select(AuditLog))).scalars().all() == []
        assert (await db.get(UserRole, target_id)).role_id == "r-editor"


@pytest.mark.asyncio
async def test_rate_limit_applies_per_authorization_header(client):
    budget = int(config.RATE_LIMIT.split("/")[0])
    headers = {"Authorization": "Bearer rate-limited"}

    for _ in range(budget):
        assert (await client.get("/", headers=headers)).status_code == 200

    response = await client.get("/", headers=headers)
    assert response.status_code == 429
    assert response.json() == {"error": "You are going too fast"}

    assert (await client.get("/", headers={"Authorization": "Bearer someone-else"})).status_code == 200
    assert (await client.get("/health", headers=headers)).status_code == 200
