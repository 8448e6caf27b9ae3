"""
Backup import conflict resolution.

Imports the records of an extracted backup archive into the database,
applying a caller-chosen strategy to every record that collides with
an existing row.

Key flow:
  1. Index the conflict catalog by (entity type, record id)
  2. Import entities in dependency order:
       settings → people → users → relationships → suggestions → audit logs
     then photos, when requested
  3. Per record:
       a. referential preconditions (suggestions, audit logs) → hard skip
       b. severity guard: any high-severity conflict → skip
       c. strategy dispatch: skip / replace / merge, or a plain import
          when the record has no conflict
  4. Every record ends in exactly one outcome: imported, conflict
     resolved, skipped, or an entry in errors

Each record is written inside its own SAVEPOINT. A failing record rolls
back alone; earlier records in the same transaction are kept and the
batch continues.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.entity_config import (
    AUDIT_LOG,
    PERSON,
    RELATIONSHIP,
    SETTINGS,
    SUGGESTION,
    USER,
    EntityConfig,
    create_payload,
    merge_payload,
    replace_payload,
    to_archive,
)
from app.models.core import FamilySettings, Person
from app.models.infrastructure import AuditLog, User
from app.schemas.backup import (
    Conflict,
    ConflictResolutionStrategy,
    ConflictSeverity,
    ImportedBy,
    ImportOutcome,
)
from app.services.audit_logger import AuditLogger
from app.services.photo_importer import import_photos
from app.services.storage import StorageAdapter

logger = logging.getLogger(__name__)

# Returns a warning when the record must be skipped, None when it may proceed.
Precondition = Callable[[AsyncSession, dict[str, Any]], Awaitable[str | None]]


class Resolution(str, Enum):
    """What happens to one incoming record."""
    IMPORT = "import"  # no conflict: create, or update a row that exists anyway
    SKIP = "skip"
    REPLACE = "replace"
    MERGE = "merge"


# ─── Resolution Rules ─────────────────────────────────────────

def has_blocking_severity(conflicts: list[Conflict]) -> bool:
    """High-severity conflicts are never written automatically."""
    return any(c.severity == ConflictSeverity.HIGH for c in conflicts)


def choose_resolution(
    strategy: ConflictResolutionStrategy,
    conflicts: list[Conflict],
) -> Resolution:
    """
    Decide the resolution for one record.

    The severity guard is evaluated before the strategy is looked at.
    """
    if not conflicts:
        return Resolution.IMPORT
    if has_blocking_severity(conflicts):
        return Resolution.SKIP
    return Resolution(strategy.value)


def index_conflicts(conflicts: list[Conflict]) -> dict[tuple[str, str | None], list[Conflict]]:
    """Group conflicts by (entity type, incoming id or existing id)."""
    conflict_map: dict[tuple[str, str | None], list[Conflict]] = defaultdict(list)
    for conflict in conflicts:
        conflict_map[(conflict.type, conflict.record_id)].append(conflict)
    return conflict_map


# ─── Resolver ─────────────────────────────────────────────────

class ConflictResolver:
    """
    Runs one import pass with a fixed strategy.

    The database session is the unit of work: it is passed into every
    call and the resolver never commits it. The caller decides whether
    the whole pass is committed or rolled back.
    """

    def __init__(
        self,
        strategy: ConflictResolutionStrategy,
        imported_by: ImportedBy,
        *,
        import_photos: bool = False,
        import_audit_logs: bool = True,
        storage: StorageAdapter | None = None,
    ) -> None:
        self.strategy = ConflictResolutionStrategy(strategy)
        self.imported_by = imported_by
        self.import_photos = import_photos
        self.import_audit_logs = import_audit_logs
        self.storage = storage
        self.audit = AuditLogger(imported_by.id)

    async def import_data(
        self,
        db: AsyncSession,
        extracted_files: Mapping[str, Any],
        conflicts: list[Conflict | dict[str, Any]],
    ) -> ImportOutcome:
        """
        Import every entity found in extracted_files.

        Raises TypeError only when extracted_files is not a mapping;
        per-record problems end up in the returned errors and warnings.
        """
        if not isinstance(extracted_files, Mapping):
            raise TypeError(
                f"extracted_files must be a mapping of archive paths, got {type(extracted_files).__name__}"
            )

        catalog = [c if isinstance(c, Conflict) else Conflict.model_validate(c) for c in conflicts]
        conflict_map = index_conflicts(catalog)
        outcome = ImportOutcome()

        logger.info(
            "Starting backup import: strategy=%s, conflicts=%d, imported_by=%s",
            self.strategy.value, len(catalog), self.imported_by.email,
        )

        await self._import_settings(db, extracted_files, conflict_map, outcome)
        await self._import_entity(db, PERSON, extracted_files, conflict_map, outcome)
        await self._import_entity(db, USER, extracted_files, conflict_map, outcome)
        await self._import_entity(db, RELATIONSHIP, extracted_files, conflict_map, outcome)
        await self._import_entity(
            db, SUGGESTION, extracted_files, conflict_map, outcome,
            precondition=_suggestion_references,
        )
        if self.import_audit_logs:
            await self._import_entity(
                db, AUDIT_LOG, extracted_files, conflict_map, outcome,
                precondition=_audit_log_references,
            )
        elif AUDIT_LOG.archive_path in extracted_files:
            logger.info("Audit logs present in archive but not requested; not imported")

        if self.import_photos:
            if self.storage is None:
                outcome.warnings.append("Photo import requested but no storage is configured")
            else:
                outcome.statistics.photos_imported = await import_photos(
                    db, extracted_files, self.storage, outcome.warnings
                )

        logger.info(
            "Backup import pass finished: %s, %d errors, %d warnings",
            outcome.statistics.model_dump(), len(outcome.errors), len(outcome.warnings),
        )
        return outcome

    # ─── Entity Passes ────────────────────────────────────────

    async def _import_settings(
        self,
        db: AsyncSession,
        extracted_files: Mapping[str, Any],
        conflict_map: dict[tuple[str, str | None], list[Conflict]],
        outcome: ImportOutcome,
    ) -> None:
        """
        Settings are a singleton: an existing row is itself the conflict.

        Catalog entries for settings (whatever id they carry) still
        contribute their severity.
        """
        data = extracted_files.get(SETTINGS.archive_path)
        if not data:
            return
        if not isinstance(data, dict):
            outcome.warnings.append(f"{SETTINGS.archive_path} is not an object; settings skipped")
            return

        conflicts = [c for (kind, _), group in conflict_map.items() if kind == SETTINGS.name for c in group]
        existing = await _find_existing(db, SETTINGS, data)
        if existing is not None and not conflicts:
            conflicts = [Conflict(
                type=SETTINGS.name,
                existing_id=existing.id,
                new_data=data,
                description="Family settings already exist",
            )]

        await self._resolve_record(db, SETTINGS, data, conflicts, outcome)

    async def _import_entity(
        self,
        db: AsyncSession,
        config: EntityConfig,
        extracted_files: Mapping[str, Any],
        conflict_map: dict[tuple[str, str | None], list[Conflict]],
        outcome: ImportOutcome,
        precondition: Precondition | None = None,
    ) -> None:
        if config.archive_path not in extracted_files:
            return
        records = extracted_files[config.archive_path]
        if not isinstance(records, list):
            outcome.warnings.append(f"{config.archive_path} is not a list; {config.plural_label} skipped")
            return

        for index, data in enumerate(records):
            if not isinstance(data, dict):
                outcome.errors.append(
                    f"Failed to import {config.label} at position {index}: record is not an object"
                )
                continue
            record_id = data.get("id")
            if record_id is not None and not isinstance(record_id, str):
                outcome.errors.append(f"Failed to import {config.label} at position {index}: invalid id")
                continue
            conflicts = conflict_map.get((config.name, record_id), [])
            await self._resolve_record(db, config, data, conflicts, outcome, precondition)

    # ─── Per-Record Resolution ────────────────────────────────

    async def _resolve_record(
        self,
        db: AsyncSession,
        config: EntityConfig,
        data: dict[str, Any],
        conflicts: list[Conflict],
        outcome: ImportOutcome,
        precondition: Precondition | None = None,
    ) -> None:
        stats = outcome.statistics
        name = f"{config.label} {config.display(data)}".strip()

        try:
            if precondition is not None:
                reason = await precondition(db, data)
                if reason is not None:
                    outcome.warnings.append(reason)
                    stats.skipped_items += 1
                    return

            resolution = choose_resolution(self.strategy, conflicts)
            if resolution is Resolution.SKIP:
                outcome.warnings.append(_skip_warning(config, name))
                stats.skipped_items += 1
                return

            async with db.begin_nested():
                await self._write(db, config, data, resolution)
        except Exception as exc:
            outcome.errors.append(f"Failed to import {name}: {exc}")
            logger.debug("Import of %s failed", name, exc_info=True)
            return

        if resolution is Resolution.IMPORT:
            if config.stat_field:
                setattr(stats, config.stat_field, getattr(stats, config.stat_field) + 1)
        else:
            stats.conflicts_resolved += 1

    async def _write(
        self,
        db: AsyncSession,
        config: EntityConfig,
        data: dict[str, Any],
        resolution: Resolution,
    ) -> None:
        """Create or update one row according to the resolution."""
        existing = await _find_existing(db, config, data)

        if existing is None:
            db.add(config.model(**create_payload(config, data)))
            await db.flush()
            return

        if resolution is Resolution.MERGE:
            payload = merge_payload(config, data)
        else:
            payload = replace_payload(config, data)

        previous = to_archive(config, existing)
        for attr, value in payload.items():
            setattr(existing, attr, value)
        await db.flush()
        await db.refresh(existing)

        if resolution is not Resolution.IMPORT:
            await self.audit.log(
                db,
                action="UPDATE",
                entity_type=config.model.__name__,
                entity_id=getattr(existing, "id", None),
                previous_data=previous,
                new_data={**to_archive(config, existing), "resolution": resolution.value},
            )


# ─── Helpers ──────────────────────────────────────────────────

async def _find_existing(db: AsyncSession, config: EntityConfig, data: dict[str, Any]) -> Any:
    if config is SETTINGS:
        result = await db.execute(
            select(FamilySettings).limit(1).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
    record_id = data.get("id")
    if not record_id:
        return None
    return await db.get(config.model, record_id, populate_existing=True)


def _skip_warning(config: EntityConfig, name: str) -> str:
    if config is SETTINGS:
        return "Skipped family settings (already exists)"
    return f"Skipped {name} due to conflicts"


async def _suggestion_references(db: AsyncSession, data: dict[str, Any]) -> str | None:
    """A suggestion needs its submitter, and its target person when it names one."""
    submitter_id = data.get("submittedById")
    if not submitter_id or await db.get(User, submitter_id) is None:
        return f"Skipped suggestion {data.get('id')} - submitter not found"
    target_id = data.get("targetPersonId")
    if target_id and await db.get(Person, target_id) is None:
        return f"Skipped suggestion {data.get('id')} - target person not found"
    return None


async def _audit_log_references(db: AsyncSession, data: dict[str, Any]) -> str | None:
    """Historical audit rows need their user and are never overwritten."""
    user_id = data.get("userId")
    if not user_id or await db.get(User, user_id) is None:
        return f"Skipped audit log {data.get('id')} - user not found"
    if data.get("id") and await db.get(AuditLog, data["id"]) is not None:
        return f"Skipped audit log {data.get('id')} - already exists"
    return None
