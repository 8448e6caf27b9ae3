"""
Tests for the Conflict Resolver.

Covers:
  - Skip strategy: re-importing the same archive writes nothing new
  - Severity guard: high-severity conflicts are skipped under every strategy
  - Merge keeps fields the archive does not carry
  - Replace clears them
  - Referential preconditions for suggestions and audit logs
  - Statistics are always fully populated
  - Per-record error isolation
  - Dependency order (relationships after their people)
"""

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from app.models.core import FamilySettings, Person, Relationship, Suggestion
from app.models.infrastructure import AuditLog, User
from app.schemas.backup import (
    Conflict,
    ConflictResolutionStrategy,
    ConflictSeverity,
    ImportedBy,
)
from app.services.conflict_detection import detect_conflicts
from app.services.conflict_resolver import (
    ConflictResolver,
    Resolution,
    choose_resolution,
    has_blocking_severity,
)
from tests.fixtures.backup_factory import (
    JPEG_BYTES,
    make_family_files,
    make_person as person_record,
    make_relationship,
    make_settings,
    make_suggestion,
)

SKIP = ConflictResolutionStrategy.SKIP
REPLACE = ConflictResolutionStrategy.REPLACE
MERGE = ConflictResolutionStrategy.MERGE


# ─── Helpers ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def importer(admin):
    """Build a resolver attributed to the admin user."""
    def _make(strategy=SKIP, **kwargs) -> ConflictResolver:
        imported_by = ImportedBy(id=admin.id, email=admin.email, name=admin.name)
        return ConflictResolver(strategy, imported_by, **kwargs)
    return _make


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def _run(db, resolver, files):
    conflicts = await detect_conflicts(db, files)
    return await resolver.import_data(db, files, conflicts)


# ─── Resolution Rules ─────────────────────────────────────────

def test_no_conflicts_means_plain_import():
    assert choose_resolution(MERGE, []) is Resolution.IMPORT


@pytest.mark.parametrize("strategy", [SKIP, REPLACE, MERGE])
def test_high_severity_forces_skip(strategy):
    conflicts = [
        Conflict(type="person", severity=ConflictSeverity.LOW),
        Conflict(type="person", severity=ConflictSeverity.HIGH),
    ]
    assert has_blocking_severity(conflicts) is True
    assert choose_resolution(strategy, conflicts) is Resolution.SKIP


def test_strategy_applies_below_high_severity():
    conflicts = [Conflict(type="user", severity=ConflictSeverity.MEDIUM)]
    assert choose_resolution(REPLACE, conflicts) is Resolution.REPLACE
    assert choose_resolution(MERGE, conflicts) is Resolution.MERGE
    assert choose_resolution(SKIP, conflicts) is Resolution.SKIP


# ─── Fresh Import ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fresh_import_creates_everything(db_session, importer):
    outcome = await _run(db_session, importer(SKIP), make_family_files())

    stats = outcome.statistics
    assert outcome.errors == []
    assert stats.people_imported == 3
    assert stats.users_imported == 1
    assert stats.relationships_imported == 3
    assert stats.suggestions_imported == 1
    assert stats.conflicts_resolved == 0
    assert stats.skipped_items == 0

    settings_row = (await db_session.execute(select(FamilySettings))).scalar_one()
    assert settings_row.family_name == "The Doe Family"
    assert settings_row.allow_self_registration is False

    alice = await db_session.get(User, "u-alice")
    assert alice.person_id == "p-alice"


@pytest.mark.asyncio
async def test_empty_file_set_reports_zeroes(db_session, importer):
    outcome = await importer(MERGE).import_data(db_session, {}, [])

    assert outcome.statistics.model_dump() == {
        "people_imported": 0,
        "relationships_imported": 0,
        "users_imported": 0,
        "suggestions_imported": 0,
        "photos_imported": 0,
        "audit_logs_imported": 0,
        "conflicts_resolved": 0,
        "skipped_items": 0,
    }
    assert outcome.errors == []
    assert outcome.warnings == []


@pytest.mark.asyncio
async def test_rejects_non_mapping_input(db_session, importer):
    with pytest.raises(TypeError):
        await importer(SKIP).import_data(db_session, [("data/people.json", [])], [])


@pytest.mark.asyncio
async def test_wrongly_shaped_data_file_is_skipped_with_warning(db_session, importer):
    files = {"data/people.json": {"id": "p-1"}}

    outcome = await importer(SKIP).import_data(db_session, files, [])

    assert outcome.errors == []
    assert outcome.warnings == ["data/people.json is not a list; people skipped"]
    assert await _count(db_session, Person) == 0


# ─── Skip ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_skip_reimport_is_idempotent(db_session, importer):
    files = make_family_files()
    await _run(db_session, importer(SKIP), files)
    people_before = await _count(db_session, Person)
    relationships_before = await _count(db_session, Relationship)

    conflicts = await detect_conflicts(db_session, files)
    outcome = await importer(SKIP).import_data(db_session, files, conflicts)

    # settings + 3 people + 1 user + 3 relationships + 1 suggestion
    assert len(conflicts) == 9
    assert outcome.statistics.skipped_items == 9
    assert outcome.statistics.people_imported == 0
    assert outcome.statistics.conflicts_resolved == 0
    assert outcome.errors == []
    assert "Skipped family settings (already exists)" in outcome.warnings
    assert "Skipped person John Doe due to conflicts" in outcome.warnings
    assert "Skipped user alice@example.com due to conflicts" in outcome.warnings
    assert await _count(db_session, Person) == people_before
    assert await _count(db_session, Relationship) == relationships_before


@pytest.mark.asyncio
async def test_skip_leaves_existing_settings_untouched(db_session, importer):
    db_session.add(FamilySettings(id="fs-1", family_name="Existing Family"))
    await db_session.flush()

    outcome = await importer(SKIP).import_data(
        db_session, {"data/settings.json": make_settings()}, []
    )

    assert outcome.warnings == ["Skipped family settings (already exists)"]
    assert outcome.statistics.skipped_items == 1
    row = (await db_session.execute(select(FamilySettings))).scalar_one()
    assert row.family_name == "Existing Family"


# ─── Severity Guard ───────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", [MERGE, REPLACE])
async def test_high_severity_person_behaves_like_skip(db_session, importer, make_person, strategy):
    await make_person("p-1", "Jane", "Doe", bio="Original")
    files = {"data/people.json": [person_record("p-1", "Mary", "Smith", bio="Other")]}

    conflicts = await detect_conflicts(db_session, files)
    outcome = await importer(strategy).import_data(db_session, files, conflicts)

    assert conflicts[0].severity == ConflictSeverity.HIGH
    assert outcome.statistics.skipped_items == 1
    assert outcome.statistics.conflicts_resolved == 0
    assert outcome.warnings == ["Skipped person Mary Smith due to conflicts"]

    person = (await db_session.execute(select(Person).where(Person.id == "p-1"))).scalar_one()
    assert person.first_name == "Jane"
    assert person.bio == "Original"


@pytest.mark.asyncio
async def test_high_severity_from_catalog_dicts(db_session, importer, make_user):
    await make_user(id="u-1", email="old@example.com")
    files = {"data/users.json": [{"id": "u-1", "email": "new@example.com", "role": "ADMIN"}]}
    conflicts = [{
        "type": "user",
        "existing_id": "u-1",
        "new_data": files["data/users.json"][0],
        "severity": "high",
    }]

    outcome = await importer(REPLACE).import_data(db_session, files, conflicts)

    assert outcome.statistics.skipped_items == 1
    user = (await db_session.execute(select(User).where(User.id == "u-1"))).scalar_one()
    assert user.email == "old@example.com"
    assert user.role == "MEMBER"


# ─── Merge ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_merge_preserves_untouched_fields(db_session, importer, make_person):
    await make_person("p-1", "Jane", "Doe", bio="Original bio")
    files = {"data/people.json": [{
        "id": "p-1",
        "firstName": "Janet",
        "lastName": "Doe",
        "email": "janet@example.com",
    }]}

    conflicts = await detect_conflicts(db_session, files)
    outcome = await importer(MERGE).import_data(db_session, files, conflicts)

    assert conflicts[0].severity == ConflictSeverity.MEDIUM
    assert set(conflicts[0].conflict_fields) == {"firstName", "email"}
    assert outcome.statistics.conflicts_resolved == 1
    assert outcome.statistics.people_imported == 0
    assert outcome.errors == []

    person = (await db_session.execute(select(Person).where(Person.id == "p-1"))).scalar_one()
    assert person.first_name == "Janet"
    assert person.email == "janet@example.com"
    assert person.bio == "Original bio"


@pytest.mark.asyncio
async def test_merge_writes_update_audit_row(db_session, importer, make_person, admin):
    await make_person("p-1", "Jane", "Doe", bio="Original bio")
    files = {"data/people.json": [person_record("p-1", "Janet", "Doe")]}

    await _run(db_session, importer(MERGE), files)

    row = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == "UPDATE")
    )).scalar_one()
    assert row.user_id == admin.id
    assert row.entity_type == "Person"
    assert row.entity_id == "p-1"
    assert row.previous_data["firstName"] == "Jane"
    assert row.new_data["firstName"] == "Janet"
    assert row.new_data["resolution"] == "merge"


# ─── Replace ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_replace_clears_fields_missing_from_archive(db_session, importer, make_person):
    await make_person("p-1", "Jane", "Doe", bio="Original bio", profession="Nurse")
    files = {"data/people.json": [{
        "id": "p-1",
        "firstName": "Janet",
        "email": "janet@example.com",
    }]}

    conflicts = await detect_conflicts(db_session, files)
    outcome = await importer(REPLACE).import_data(db_session, files, conflicts)

    assert outcome.statistics.conflicts_resolved == 1
    assert outcome.errors == []

    person = (await db_session.execute(select(Person).where(Person.id == "p-1"))).scalar_one()
    assert person.first_name == "Janet"
    assert person.email == "janet@example.com"
    assert person.bio is None
    assert person.profession is None
    # Required and absent from the archive: stored value kept
    assert person.last_name == "Doe"


@pytest.mark.asyncio
async def test_replace_overwrites_settings(db_session, importer):
    db_session.add(FamilySettings(id="fs-1", family_name="Existing Family", description="Old"))
    await db_session.flush()

    outcome = await importer(REPLACE).import_data(
        db_session, {"data/settings.json": {"familyName": "Imported Family"}}, []
    )

    assert outcome.statistics.conflicts_resolved == 1
    row = (await db_session.execute(select(FamilySettings))).scalar_one()
    assert row.id == "fs-1"
    assert row.family_name == "Imported Family"
    assert row.description is None
    assert row.locale == "en"


@pytest.mark.asyncio
async def test_replace_creates_row_missing_from_database(db_session, importer):
    files = {"data/people.json": [person_record("p-new", "New", "Person")]}
    conflicts = [Conflict(type="person", new_data=files["data/people.json"][0], severity="medium")]

    outcome = await importer(REPLACE).import_data(db_session, files, conflicts)

    assert outcome.statistics.conflicts_resolved == 1
    assert outcome.statistics.people_imported == 0
    assert await db_session.get(Person, "p-new") is not None


@pytest.mark.asyncio
async def test_existing_row_without_catalog_entry_is_updated(db_session, importer, make_person):
    await make_person("p-1", "Jane", "Doe")
    files = {"data/people.json": [person_record("p-1", "Jane", "Doe-Smith")]}

    outcome = await importer(SKIP).import_data(db_session, files, [])

    assert outcome.statistics.people_imported == 1
    person = (await db_session.execute(select(Person).where(Person.id == "p-1"))).scalar_one()
    assert person.last_name == "Doe-Smith"


# ─── Referential Preconditions ────────────────────────────────

@pytest.mark.asyncio
async def test_suggestion_with_unknown_submitter_is_skipped(db_session, importer):
    files = {"data/suggestions.json": [make_suggestion("s-9", "u-ghost")]}

    outcome = await importer(MERGE).import_data(db_session, files, [])

    assert outcome.warnings == ["Skipped suggestion s-9 - submitter not found"]
    assert outcome.statistics.skipped_items == 1
    assert outcome.statistics.suggestions_imported == 0
    assert outcome.errors == []
    assert await _count(db_session, Suggestion) == 0


@pytest.mark.asyncio
async def test_suggestion_with_unknown_target_is_skipped(db_session, importer, make_user):
    await make_user(id="u-1")
    files = {"data/suggestions.json": [make_suggestion("s-1", "u-1", "p-ghost")]}

    outcome = await importer(SKIP).import_data(db_session, files, [])

    assert outcome.warnings == ["Skipped suggestion s-1 - target person not found"]
    assert await _count(db_session, Suggestion) == 0


@pytest.mark.asyncio
async def test_suggestion_submitter_imported_in_same_batch(db_session, importer):
    files = make_family_files()
    del files["data/relationships.json"]

    outcome = await importer(SKIP).import_data(db_session, files, [])

    assert outcome.statistics.suggestions_imported == 1
    suggestion = await db_session.get(Suggestion, "s-1")
    assert suggestion.submitted_by_id == "u-alice"


@pytest.mark.asyncio
async def test_audit_logs_imported_when_requested(db_session, importer, admin):
    files = {"data/audit-logs.json": [
        {"id": "al-1", "userId": admin.id, "action": "CREATE", "entityType": "Person",
         "entityId": "p-1", "newData": {"firstName": "Jane"}, "createdAt": "2025-01-01T00:00:00Z"},
        {"id": "al-2", "userId": "u-ghost", "action": "DELETE", "entityType": "Person",
         "createdAt": "2025-01-02T00:00:00Z"},
    ]}

    outcome = await importer(SKIP, import_audit_logs=True).import_data(db_session, files, [])

    assert outcome.statistics.audit_logs_imported == 1
    assert outcome.statistics.skipped_items == 1
    assert outcome.warnings == ["Skipped audit log al-2 - user not found"]
    row = await db_session.get(AuditLog, "al-1")
    assert row.new_data == {"firstName": "Jane"}


@pytest.mark.asyncio
async def test_existing_audit_log_is_never_overwritten(db_session, importer, admin):
    db_session.add(AuditLog(id="al-1", user_id=admin.id, action="CREATE", entity_type="Person"))
    await db_session.flush()
    files = {"data/audit-logs.json": [
        {"id": "al-1", "userId": admin.id, "action": "DELETE", "entityType": "User"},
    ]}

    outcome = await importer(REPLACE, import_audit_logs=True).import_data(db_session, files, [])

    assert outcome.warnings == ["Skipped audit log al-1 - already exists"]
    row = (await db_session.execute(select(AuditLog).where(AuditLog.id == "al-1"))).scalar_one()
    assert row.action == "CREATE"


@pytest.mark.asyncio
async def test_audit_logs_ignored_unless_requested(db_session, importer, admin):
    files = {"data/audit-logs.json": [
        {"id": "al-1", "userId": admin.id, "action": "CREATE", "entityType": "Person"},
    ]}

    outcome = await importer(SKIP, import_audit_logs=False).import_data(db_session, files, [])

    assert outcome.statistics.audit_logs_imported == 0
    assert await db_session.get(AuditLog, "al-1") is None


# ─── Error Isolation & Ordering ───────────────────────────────

@pytest.mark.asyncio
async def test_failing_record_does_not_stop_the_batch(db_session, importer):
    files = {"data/people.json": [
        person_record("p-1", "First", "Person"),
        {"id": "p-2", "lastName": "Broken"},
        person_record("p-3", "Third", "Person"),
    ]}

    outcome = await importer(SKIP).import_data(db_session, files, [])

    assert outcome.statistics.people_imported == 2
    assert len(outcome.errors) == 1
    assert outcome.errors[0].startswith("Failed to import person Broken:")
    ids = set((await db_session.execute(select(Person.id))).scalars().all())
    assert ids == {"p-1", "p-3"}


@pytest.mark.asyncio
async def test_record_with_non_string_id_fails_alone(db_session, importer):
    files = {"data/people.json": [
        person_record("p-1", "First", "Person"),
        person_record(["p-2"], "Listed", "Id"),
        person_record("p-3", "Third", "Person"),
    ]}

    outcome = await _run(db_session, importer(MERGE), files)

    assert outcome.statistics.people_imported == 2
    assert outcome.errors == ["Failed to import person at position 1: invalid id"]
    ids = set((await db_session.execute(select(Person.id))).scalars().all())
    assert ids == {"p-1", "p-3"}


@pytest.mark.asyncio
async def test_relationships_resolve_people_from_same_batch(db_session, importer):
    files = {
        "data/people.json": [person_record("p-a", "Ann"), person_record("p-b", "Ben")],
        "data/relationships.json": [
            make_relationship("r-1", "p-a", "p-b", "SIBLING"),
            make_relationship("r-2", "p-b", "p-a", "SIBLING"),
        ],
    }

    outcome = await importer(SKIP).import_data(db_session, files, [])

    assert outcome.errors == []
    assert outcome.statistics.relationships_imported == 2


@pytest.mark.asyncio
async def test_relationship_to_unknown_person_fails_alone(db_session, importer):
    files = {
        "data/people.json": [person_record("p-a", "Ann")],
        "data/relationships.json": [
            make_relationship("r-1", "p-a", "p-missing", "SIBLING"),
        ],
    }

    outcome = await importer(SKIP).import_data(db_session, files, [])

    assert outcome.statistics.people_imported == 1
    assert outcome.statistics.relationships_imported == 0
    assert len(outcome.errors) == 1
    assert outcome.errors[0].startswith("Failed to import relationship r-1:")


# ─── Photos ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_photos_imported_after_people(db_session, importer, storage):
    files = {
        "data/people.json": [person_record("p-1", "Jane", "Doe")],
        "photos/p-1/portrait.jpg": JPEG_BYTES,
    }

    outcome = await importer(SKIP, import_photos=True, storage=storage).import_data(
        db_session, files, []
    )

    assert outcome.statistics.photos_imported == 1
    person = (await db_session.execute(select(Person).where(Person.id == "p-1"))).scalar_one()
    assert person.photo_url.startswith("/api/uploads/")
    assert person.photo_url.endswith("-portrait.jpg")


@pytest.mark.asyncio
async def test_photos_ignored_unless_requested(db_session, importer, storage):
    files = {
        "data/people.json": [person_record("p-1", "Jane", "Doe")],
        "photos/p-1/portrait.jpg": JPEG_BYTES,
    }

    outcome = await importer(SKIP, import_photos=False, storage=storage).import_data(
        db_session, files, []
    )

    assert outcome.statistics.photos_imported == 0
    assert not storage.root.exists()
