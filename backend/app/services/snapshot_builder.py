"""
Pre-import safety snapshot.

Writes the current database state to
<storage root>/backups/pre-import-backup-<timestamp>.zip, in the same
layout the importer reads, so a bad import can be undone by importing
the snapshot:

    metadata.json
    data/settings.json
    data/people.json
    data/relationships.json
    data/users.json
    data/suggestions.json
    data/audit-logs.json      (last SNAPSHOT_AUDIT_LOG_DAYS days)
    photos/<personId>/<filename>
"""

import io
import json
import logging
import os
import zipfile
from datetime import datetime, timedelta, timezone
from typing import Any

import aiofiles
import aiofiles.os
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.entity_config import (
    AUDIT_LOG,
    PERSON,
    RELATIONSHIP,
    SETTINGS,
    SUGGESTION,
    USER,
    EntityConfig,
    to_archive,
)
from app.core.errors import SnapshotError
from app.schemas.backup import BackupMetadata, BackupStatistics
from app.services.storage import StorageAdapter

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "1.0.0"
SNAPSHOT_DIR = "backups"


def snapshot_filename(now: datetime | None = None) -> str:
    """pre-import-backup-<ISO timestamp with ':' and '.' replaced by '-'>.zip"""
    now = now or datetime.now(timezone.utc)
    stamp = now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"pre-import-backup-{stamp.replace(':', '-').replace('.', '-')}.zip"


async def _dump(db: AsyncSession, config: EntityConfig, *criteria) -> list[dict[str, Any]]:
    result = await db.execute(select(config.model).where(*criteria))
    return [to_archive(config, row) for row in result.scalars().unique().all()]


async def gather_snapshot_data(db: AsyncSession) -> dict[str, Any]:
    """Current rows of every entity, keyed by archive path."""
    since = datetime.now(timezone.utc) - timedelta(days=settings.SNAPSHOT_AUDIT_LOG_DAYS)
    family_settings = await _dump(db, SETTINGS)
    return {
        SETTINGS.archive_path: family_settings[0] if family_settings else {},
        PERSON.archive_path: await _dump(db, PERSON),
        RELATIONSHIP.archive_path: await _dump(db, RELATIONSHIP),
        USER.archive_path: await _dump(db, USER),
        SUGGESTION.archive_path: await _dump(db, SUGGESTION),
        AUDIT_LOG.archive_path: await _dump(db, AUDIT_LOG, AUDIT_LOG.model.created_at >= since),
    }


def archive_photo_name(stored_path: str) -> str:
    """Original upload name: the storage's unique prefix is dropped."""
    name = os.path.basename(stored_path)
    _, sep, rest = name.partition("-")
    return rest if sep and rest else name


async def _collect_photos(people: list[dict[str, Any]], storage: StorageAdapter) -> dict[str, bytes]:
    """Locally stored photos, keyed by archive path. Unreadable photos are left out."""
    photos: dict[str, bytes] = {}
    for person in people:
        photo_url = person.get("photoUrl")
        if not photo_url:
            continue
        stored_path = storage.path_from_url(photo_url)
        if stored_path is None:
            continue
        try:
            content = await storage.read(stored_path)
        except OSError as e:
            logger.warning("Photo %s for person %s not included in snapshot: %s", stored_path, person["id"], e)
            continue
        photos[f"photos/{person['id']}/{archive_photo_name(stored_path)}"] = content
    return photos


def build_archive(data: dict[str, Any], photos: dict[str, bytes], metadata: BackupMetadata) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("metadata.json", json.dumps(metadata.model_dump(by_alias=True), indent=2))
        for path, content in data.items():
            archive.writestr(path, json.dumps(content, indent=2))
        for path, content in photos.items():
            archive.writestr(path, content)
    return buffer.getvalue()


async def create_pre_import_snapshot(db: AsyncSession, storage: StorageAdapter) -> str:
    """
    Write a snapshot of the current state and return its filename.

    Raises SnapshotError on any failure; the caller must not start the
    import in that case.
    """
    try:
        now = datetime.now(timezone.utc)
        data = await gather_snapshot_data(db)
        photos = await _collect_photos(data[PERSON.archive_path], storage)

        metadata = BackupMetadata(
            version=BACKUP_FORMAT_VERSION,
            exported_at=now.isoformat().replace("+00:00", "Z"),
            statistics=BackupStatistics(
                total_people=len(data[PERSON.archive_path]),
                total_relationships=len(data[RELATIONSHIP.archive_path]),
                total_users=len(data[USER.archive_path]),
                total_suggestions=len(data[SUGGESTION.archive_path]),
                total_photos=len(photos),
                audit_log_days=settings.SNAPSHOT_AUDIT_LOG_DAYS,
                total_audit_logs=len(data[AUDIT_LOG.archive_path]),
            ),
            data_files=list(data),
            photo_directories=sorted({path.rsplit("/", 1)[0] + "/" for path in photos}),
        )

        filename = snapshot_filename(now)
        directory = storage.root / SNAPSHOT_DIR
        await aiofiles.os.makedirs(directory, exist_ok=True)
        async with aiofiles.open(directory / filename, "wb") as fh:
            await fh.write(build_archive(data, photos, metadata))
    except Exception as e:
        logger.exception("Failed to create pre-import backup")
        raise SnapshotError("Failed to create backup before import") from e

    logger.info("Pre-import backup written: %s", filename)
    return filename
