from datetime import datetime, timedelta, timezone

import pytest

from app.core import config
from app.features.audit.models import AuditLog
from app.features.audit.recorder import AuditAction, list_entries, record


async def add_entries(db, count, resource_type="user_role"):
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i in range(count):
        db.add(AuditLog(
            action="update",
            resource_type=resource_type,
            resource_id=f"user-{i}",
            performed_by="admin",
            created_at=start + timedelta(minutes=i),
        ))
    await db.commit()


@pytest.mark.asyncio
async def test_record_flushes_without_commit(db):
    entry = await record(db, AuditAction.INVITE, "user", "u1", new_data={"email": "a@example.com"}, performed_by="admin")
    assert entry.id
    assert entry.action == "invite"

    await db.rollback()
    assert await list_entries(db) == []


@pytest.mark.asyncio
async def test_entries_newest_first(db):
    await add_entries(db, 3)
    entries = await list_entries(db)
    assert [e.resource_id for e in entries] == ["user-2", "user-1", "user-0"]


@pytest.mark.asyncio
async def test_filter_matches_any_of_action_type_or_id(db):
    await add_entries(db, 2, resource_type="user_role")
    await add_entries(db, 1, resource_type="user_permissions")

    assert len(await list_entries(db, filter_text="permissions")) == 1
    assert len(await list_entries(db, filter_text="user-1")) == 1
    assert len(await list_entries(db, filter_text="update")) == 3
    assert await list_entries(db, filter_text="%") == []


@pytest.mark.asyncio
async def test_limit_is_capped(db, monkeypatch):
    await add_entries(db, 5)
    monkeypatch.setattr(config, "AUDIT_LOG_LIMIT", 3)

    assert len(await list_entries(db, limit=10)) == 3
    assert len(await list_entries(db, limit=2)) == 2
