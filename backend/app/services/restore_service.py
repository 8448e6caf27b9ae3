"""
Restore service: validate, import, and list past imports.

The import is one unit of work on the caller's session:

    validate archive → detect conflicts
    → [pre-import snapshot] → resolve + import (photos included)
    → BACKUP_IMPORT audit row → commit

Any exception after validation rolls the whole import back, writes a
BACKUP_IMPORT_FAILED audit row on its own, and is re-raised as
BackupImportError.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import BackupImportError, BackupValidationError, PermissionDeniedError
from app.models.infrastructure import AuditLog, User
from app.schemas.backup import (
    BackupImportOptions,
    ImportedBy,
    ImportHistoryEntry,
    ImportResult,
    ValidationResult,
)
from app.services.audit_logger import BACKUP_IMPORT, BACKUP_IMPORT_FAILED, AuditLogger
from app.services.backup_validator import BackupValidator
from app.services.conflict_detection import detect_conflicts, summarize_conflicts
from app.services.conflict_resolver import ConflictResolver
from app.services.snapshot_builder import create_pre_import_snapshot
from app.services.storage import StorageAdapter

logger = logging.getLogger(__name__)


def require_admin(user: User, action: str) -> None:
    if not user.is_admin or not user.is_active:
        raise PermissionDeniedError(f"Only administrators can {action}")


async def validate_backup(
    db: AsyncSession,
    data: bytes,
    filename: str | None,
    user: User,
) -> ValidationResult:
    """Validate an archive and list its conflicts. Writes nothing."""
    require_admin(user, "validate backups")
    validator = BackupValidator(data, filename)
    result = validator.validate()
    if result.is_valid:
        result.conflicts = await detect_conflicts(db, validator.extracted_files)
        result.statistics = summarize_conflicts(result.conflicts)
    return result


async def import_backup(
    db: AsyncSession,
    data: bytes,
    filename: str | None,
    options: BackupImportOptions,
    user: User,
    storage: StorageAdapter,
) -> ImportResult:
    """
    Import an archive with the chosen strategy.

    Raises BackupValidationError for an unusable archive (nothing is
    written) and BackupImportError when the import itself failed and
    was rolled back.
    """
    require_admin(user, "import backups")

    validator = BackupValidator(data, filename)
    validation = validator.validate()
    if not validation.is_valid:
        raise BackupValidationError(f"Invalid backup: {'; '.join(validation.errors)}")

    # Captured up front: a rollback expires the ORM user
    imported_by = ImportedBy(id=user.id, email=user.email, name=user.name)
    audit = AuditLogger(imported_by.id)

    try:
        conflicts = await detect_conflicts(db, validator.extracted_files)

        backup_created = None
        if options.create_backup_before_import:
            backup_created = await create_pre_import_snapshot(db, storage)

        resolver = ConflictResolver(
            options.strategy,
            imported_by,
            import_photos=options.import_photos,
            import_audit_logs=options.import_audit_logs,
            storage=storage,
        )
        outcome = await resolver.import_data(db, validator.extracted_files, conflicts)

        await audit.log_import_success(db, options.strategy, outcome.statistics, backup_created)
        await db.commit()
    except Exception as e:
        logger.exception("Backup import failed")
        await db.rollback()
        await audit.log_import_failure(db, str(e))
        raise BackupImportError(f"Import failed: {e}") from e

    logger.info(
        "Backup %s imported by %s with strategy %s: %d errors",
        filename, imported_by.email, options.strategy.value, len(outcome.errors),
    )
    return ImportResult(
        success=not outcome.errors,
        imported_at=datetime.now(timezone.utc),
        imported_by=imported_by,
        strategy=options.strategy,
        statistics=outcome.statistics,
        backup_created=backup_created,
        errors=outcome.errors,
        warnings=outcome.warnings + validation.warnings,
    )


async def get_import_history(
    db: AsyncSession,
    user: User,
    limit: int | None = None,
) -> list[ImportHistoryEntry]:
    """Most recent imports first, successful and failed."""
    require_admin(user, "view import history")
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type.in_([BACKUP_IMPORT, BACKUP_IMPORT_FAILED]))
        .order_by(AuditLog.created_at.desc())
        .limit(limit or settings.IMPORT_HISTORY_LIMIT)
    )

    history = []
    for row in result.scalars().all():
        details = row.new_data or {}
        history.append(ImportHistoryEntry(
            id=row.id,
            imported_at=row.created_at,
            imported_by=row.user.name or row.user.email,
            strategy=details.get("strategy", "unknown"),
            statistics=details.get("statistics") or {},
            success=row.entity_type == BACKUP_IMPORT,
            error=details.get("error"),
        ))
    return history
