"""
Photo import from an extracted backup archive.

Photos live in the archive as photos/<personId>/<filename>. Each one is
uploaded through the storage adapter and its public URL written to the
person's photo_url. Uploads are not transactional: if the surrounding
database transaction later rolls back, the uploaded files stay behind.
"""

import logging
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.core import Person
from app.services.storage import StorageAdapter, guess_content_type

logger = logging.getLogger(__name__)

PHOTO_PREFIX = "photos/"


def parse_photo_path(path: str) -> tuple[str, str] | None:
    """
    Split 'photos/<personId>/<filename>' into (person_id, filename).

    Returns None for anything else, including directory placeholders.
    """
    if not path.startswith(PHOTO_PREFIX) or path.endswith("/"):
        return None
    parts = path.split("/")
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return None
    return parts[1], parts[2]


def iter_photo_entries(extracted_files: Mapping[str, Any]):
    """Yield (path, person_id, filename, data) for every photo entry."""
    for path, data in extracted_files.items():
        parsed = parse_photo_path(path)
        if parsed is None:
            continue
        yield path, parsed[0], parsed[1], data


async def import_photos(
    db: AsyncSession,
    extracted_files: Mapping[str, Any],
    storage: StorageAdapter,
    warnings: list[str] | None = None,
) -> int:
    """
    Upload every archive photo whose person exists and link it.

    A failure on one photo is logged (and appended to warnings when given)
    and the batch continues. Returns the number of photos linked.
    """
    imported = 0

    for path, person_id, filename, data in iter_photo_entries(extracted_files):
        person = await db.get(Person, person_id)
        if person is None:
            message = f"Skipped photo {path} - person {person_id} not found"
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
            continue

        try:
            if not isinstance(data, (bytes, bytearray)):
                raise TypeError(f"expected binary content, got {type(data).__name__}")
            stored_path = await storage.upload(bytes(data), filename, guess_content_type(filename))
            photo_url = storage.get_url(stored_path)
            async with db.begin_nested():
                person.photo_url = photo_url
                await db.flush()
        except Exception as exc:
            message = f"Failed to import photo {path}: {exc}"
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
            continue

        imported += 1

    return imported
