"""Tests for the Audit Logger — best-effort writes and import summary rows."""

import pytest
from sqlalchemy import select

from app.models.core import Person
from app.models.infrastructure import AuditLog
from app.schemas.backup import ConflictResolutionStrategy, ImportStatistics
from app.services.audit_logger import BACKUP_IMPORT, BACKUP_IMPORT_FAILED, AuditLogger


@pytest.mark.asyncio
async def test_log_writes_row(db_session, admin):
    ok = await AuditLogger(admin.id).log(
        db_session, "UPDATE", "Person", "p-1",
        previous_data={"bio": None}, new_data={"bio": "Hello"},
    )

    assert ok is True
    row = (await db_session.execute(select(AuditLog))).scalar_one()
    assert row.user_id == admin.id
    assert row.entity_id == "p-1"
    assert row.new_data == {"bio": "Hello"}


@pytest.mark.asyncio
async def test_failed_log_is_contained(db_session, make_person):
    await make_person("p-1")

    # Unknown user violates the foreign key
    ok = await AuditLogger("u-ghost").log(db_session, "CREATE", "Person", "p-1")

    assert ok is False
    assert (await db_session.execute(select(AuditLog))).scalars().all() == []
    # The surrounding transaction is still usable
    assert (await db_session.execute(select(Person.id))).scalars().all() == ["p-1"]


@pytest.mark.asyncio
async def test_import_success_summary(db_session, admin):
    stats = ImportStatistics(people_imported=3, skipped_items=1)

    await AuditLogger(admin.id).log_import_success(
        db_session, ConflictResolutionStrategy.MERGE, stats, "pre-import-backup-x.zip"
    )

    row = (await db_session.execute(select(AuditLog))).scalar_one()
    assert row.action == "CREATE"
    assert row.entity_type == BACKUP_IMPORT
    assert row.entity_id is None
    assert row.new_data["strategy"] == "merge"
    assert row.new_data["statistics"]["people_imported"] == 3
    assert row.new_data["backup_created"] == "pre-import-backup-x.zip"
    assert "timestamp" in row.new_data


@pytest.mark.asyncio
async def test_import_failure_summary_is_committed(db_session, admin):
    ok = await AuditLogger(admin.id).log_import_failure(db_session, "boom")
    await db_session.rollback()

    assert ok is True
    row = (await db_session.execute(select(AuditLog))).scalar_one()
    assert row.entity_type == BACKUP_IMPORT_FAILED
    assert row.new_data["error"] == "boom"
