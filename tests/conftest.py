"""Test configuration and fixtures for the access-control backend."""

from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert

from app.core.database.engine import build_engine, build_session_factory, get_db, init_db
from app.core.exceptions import UnauthenticatedError
from app.features.permissions.catalog import AccessCatalog, PermissionDefinition, RoleDefinition
from app.features.permissions.models import Permission, Role, UserRole, role_permissions
from app.features.users.auth import get_identity_provider
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app as fastapi_app


ROLES = [
    RoleDefinition("r-super", "super_admin", "Super Admin", 100, is_system=True, is_super=True),
    RoleDefinition("r-admin", "admin", "Admin", 80, is_system=True),
    RoleDefinition("r-approver", "approver", "Approver", 60, is_system=True),
    RoleDefinition("r-qa", "quality_assurance", "Quality Assurance", 50, is_system=True),
    RoleDefinition("r-editor", "editor", "Editor", 40, is_system=True),
    RoleDefinition("r-viewer", "viewer", "Viewer", 10, is_system=True),
]

PERMISSIONS = [
    PermissionDefinition("p-manage-users", "access", "manage_users", display_name="Manage users"),
    PermissionDefinition("p-manage-perms", "access", "manage_permissions", display_name="Manage permissions"),
    PermissionDefinition("p-audit", "access", "view_audit_logs", display_name="View audit logs"),
    PermissionDefinition("p-origin-view", "origin", "view", display_name="View origin"),
    PermissionDefinition("p-origin-edit", "origin", "edit", display_name="Edit origin"),
    PermissionDefinition("p-code-view", "code", "view", display_name="View codes"),
    PermissionDefinition("p-code-approve", "code", "approve", display_name="Approve codes"),
    PermissionDefinition("p-stock-edit", "stock", "edit", display_name="Edit stock"),
    PermissionDefinition("p-stock-edit-inv", "stock", "edit", "inventory", display_name="Edit inventory"),
]

VIEW_ALL = {"p-origin-view", "p-code-view"}

ROLE_PERMISSIONS = {
    "r-admin": {p.id for p in PERMISSIONS},
    "r-approver": VIEW_ALL | {"p-code-approve"},
    "r-qa": VIEW_ALL | {"p-origin-edit", "p-audit"},
    "r-editor": VIEW_ALL | {"p-origin-edit", "p-stock-edit-inv"},
    "r-viewer": VIEW_ALL,
}


class FakeIdentityProvider:
    """Records identity calls instead of talking to Appwrite."""

    def __init__(self):
        self.invited = []
        self.deleted = []

    async def invite(self, email: str) -> str:
        self.invited.append(email)
        return f"aw-invited-{len(self.invited)}"

    async def delete(self, appwrite_id: str) -> None:
        self.deleted.append(appwrite_id)


@pytest.fixture
def catalog():
    """Synthetic catalog with the six-tier hierarchy."""
    return AccessCatalog(ROLES, PERMISSIONS, ROLE_PERMISSIONS)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test, with the catalog rows seeded."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    async with engine.begin() as conn:
        await conn.execute(insert(Role.__table__), [
            dict(id=r.id, name=r.name, display_name=r.display_name, hierarchy_level=r.hierarchy_level,
                 is_system=r.is_system, is_super=r.is_super)
            for r in ROLES
        ])
        await conn.execute(insert(Permission.__table__), [
            dict(id=p.id, app=p.app, action=p.action, resource=p.resource, display_name=p.display_name)
            for p in PERMISSIONS
        ])
        await conn.execute(insert(role_permissions), [
            dict(role_id=role_id, permission_id=pid)
            for role_id, ids in ROLE_PERMISSIONS.items()
            for pid in sorted(ids)
        ])
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session_factory):
    """One user per role plus ``nobody``, who has no role row."""
    created = {}
    async with session_factory() as session:
        for name, role_id in [
            ("super", "r-super"),
            ("admin", "r-admin"),
            ("approver", "r-approver"),
            ("qa", "r-qa"),
            ("editor", "r-editor"),
            ("viewer", "r-viewer"),
            ("nobody", None),
        ]:
            user = User(appwrite_id=f"aw-{name}", email=f"{name}@example.com", name=name.title())
            session.add(user)
            await session.flush()
            if role_id:
                session.add(UserRole(user_id=user.id, role_id=role_id))
            created[name] = user
        await session.commit()
        for user in created.values():
            await session.refresh(user)
    return created


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def principal():
    """Set ``principal.user`` to authenticate API requests as that user."""
    return SimpleNamespace(user=None)


@pytest_asyncio.fixture
async def client(session_factory, catalog, identity, principal):
    """Async API client bound to the test database and catalog."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_current_user():
        if principal.user is None:
            raise UnauthenticatedError("Not authenticated")
        return principal.user

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_current_user] = override_current_user
    fastapi_app.dependency_overrides[get_identity_provider] = lambda: identity
    fastapi_app.state.catalog = catalog
    fastapi_app.state.limiter.reset()

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    fastapi_app.dependency_overrides.clear()
    del fastapi_app.state.catalog
