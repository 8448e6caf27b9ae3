"""
Backup API routes.

Endpoints:
  POST   /api/v1/backup/validate   — Validate an archive and list conflicts
  POST   /api/v1/backup/import     — Import an archive with a strategy
  GET    /api/v1/backup/history    — Recent imports, successful and failed

All endpoints require an active administrator (X-User-Id header).
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_admin
from app.core.database import get_db
from app.core.errors import BackupImportError, BackupValidationError, PermissionDeniedError
from app.models.infrastructure import User
from app.schemas.backup import (
    BackupImportOptions,
    ConflictResolutionStrategy,
    ImportHistoryEntry,
    ImportResult,
    ValidationResult,
)
from app.services import restore_service
from app.services.storage import LocalStorage, get_storage_adapter

router = APIRouter()


@router.post("/validate", response_model=ValidationResult)
async def validate_backup(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    """
    Validate an uploaded archive without importing it.

    An archive that cannot be read at all is a 400; one that reads but
    has problems comes back with is_valid false and its errors listed.
    """
    data = await file.read()
    try:
        return await restore_service.validate_backup(db, data, file.filename, admin)
    except BackupValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.post("/import", response_model=ImportResult)
async def import_backup(
    file: UploadFile = File(...),
    strategy: ConflictResolutionStrategy = Form(ConflictResolutionStrategy.SKIP),
    create_backup_before_import: bool = Form(True),
    import_photos: bool = Form(True),
    import_audit_logs: bool = Form(False),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
    storage: LocalStorage = Depends(get_storage_adapter),
):
    """
    Import an archive.

    Per-record failures do not fail the request: they are listed in
    errors and success is false. Only a rolled-back import is a 500.
    """
    options = BackupImportOptions(
        strategy=strategy,
        create_backup_before_import=create_backup_before_import,
        import_photos=import_photos,
        import_audit_logs=import_audit_logs,
    )
    data = await file.read()
    try:
        return await restore_service.import_backup(db, data, file.filename, options, admin, storage)
    except BackupValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except BackupImportError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/history", response_model=list[ImportHistoryEntry])
async def import_history(
    limit: int | None = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    try:
        return await restore_service.get_import_history(db, admin, limit)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
