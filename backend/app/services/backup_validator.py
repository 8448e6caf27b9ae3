"""
Backup archive extraction and validation.

Two levels of rejection:
  - The upload cannot be read at all (too large, not a .zip, empty,
    corrupt, a JSON entry that does not parse): BackupValidationError
    is raised from validate().
  - The archive reads but its contents are unusable (metadata missing
    or malformed, unsupported version, missing data files, records of
    the wrong shape): validate() returns is_valid=False with the
    problems listed in errors.

Conflict detection against the database happens separately, in the
restore service, once the archive is known to be valid.
"""

import io
import json
import logging
import zipfile
import zlib
from typing import Any

from pydantic import ValidationError

from app.core.config import settings
from app.core.entity_config import PERSON, RELATIONSHIP, SETTINGS, USER, EntityConfig
from app.core.errors import BackupValidationError
from app.schemas.backup import BackupMetadata, ValidationResult
from app.services.photo_importer import iter_photo_entries

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"

VALID_ROLES = ("ADMIN", "MEMBER", "VIEWER")
VALID_RELATIONSHIP_TYPES = ("PARENT", "CHILD", "SPOUSE", "SIBLING")

# Archive keys each record must carry as a non-empty string
REQUIRED_RECORD_KEYS: dict[str, tuple[str, ...]] = {
    PERSON.name: ("id", "firstName", "lastName"),
    USER.name: ("id", "email"),
    RELATIONSHIP.name: ("id", "personId", "relatedPersonId", "type"),
}


def extract_archive(data: bytes) -> dict[str, Any]:
    """
    Read every file entry of a ZIP archive.

    .json entries are parsed; everything else is kept as raw bytes.
    Directory entries are dropped.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise BackupValidationError(f"File is not a valid ZIP archive: {e}")

    extracted: dict[str, Any] = {}
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            try:
                content = archive.read(info.filename)
            except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError) as e:
                raise BackupValidationError(f"Corrupt archive entry {info.filename}: {e}")
            if info.filename.endswith(".json"):
                try:
                    extracted[info.filename] = json.loads(content.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    raise BackupValidationError(f"Invalid JSON in file {info.filename}: {e}")
            else:
                extracted[info.filename] = content
    return extracted


class BackupValidator:
    """Validates one uploaded archive. Holds the extracted files afterwards."""

    def __init__(self, data: bytes, filename: str | None = None) -> None:
        self.data = data
        self.filename = filename or ""
        self.extracted_files: dict[str, Any] = {}
        self.metadata: BackupMetadata | None = None

    def check_upload(self) -> None:
        """Reject uploads that cannot be an archive at all."""
        max_bytes = settings.MAX_BACKUP_SIZE_MB * 1024 * 1024
        if len(self.data) > max_bytes:
            raise BackupValidationError(
                f"File too large. Maximum size is {settings.MAX_BACKUP_SIZE_MB}MB"
            )
        if self.filename and not self.filename.lower().endswith(".zip"):
            raise BackupValidationError("File must be a ZIP archive")
        if not self.data:
            raise BackupValidationError("File is empty")

    def validate(self) -> ValidationResult:
        self.check_upload()
        self.extracted_files = extract_archive(self.data)

        errors: list[str] = []
        warnings: list[str] = []

        self.metadata = self._validate_metadata(errors)
        if self.metadata is None:
            return ValidationResult(is_valid=False, errors=errors, warnings=warnings)

        self._validate_data_files(errors, warnings)

        if errors:
            logger.info("Backup %s rejected: %s", self.filename, "; ".join(errors))
        return ValidationResult(
            is_valid=not errors,
            metadata=self.metadata,
            errors=errors,
            warnings=warnings,
        )

    # ─── Metadata ─────────────────────────────────────────────

    def _validate_metadata(self, errors: list[str]) -> BackupMetadata | None:
        raw = self.extracted_files.get(METADATA_FILE)
        if raw is None:
            errors.append("Missing metadata.json file")
            return None

        try:
            metadata = BackupMetadata.model_validate(raw)
        except ValidationError as e:
            errors.append(f"Invalid metadata format: {e}")
            return None

        if metadata.version not in settings.SUPPORTED_BACKUP_VERSIONS:
            errors.append(
                f"Unsupported backup version: {metadata.version}. "
                f"Supported versions: {', '.join(settings.SUPPORTED_BACKUP_VERSIONS)}"
            )
        for data_file in metadata.data_files:
            if data_file not in self.extracted_files:
                errors.append(f"Missing required data file: {data_file}")
        return metadata

    # ─── Data Files ───────────────────────────────────────────

    def _validate_data_files(self, errors: list[str], warnings: list[str]) -> None:
        settings_data = self.extracted_files.get(SETTINGS.archive_path)
        if settings_data is not None and not isinstance(settings_data, dict):
            errors.append("Settings data must be an object")

        for config in (PERSON, USER, RELATIONSHIP):
            self._validate_records(config, errors)

        expected_photos = self.metadata.statistics.total_photos if self.metadata else 0
        found_photos = sum(1 for _ in iter_photo_entries(self.extracted_files))
        if expected_photos > 0 and found_photos != expected_photos:
            warnings.append(
                f"Expected {expected_photos} photos but found {found_photos} photo files"
            )

    def _validate_records(self, config: EntityConfig, errors: list[str]) -> None:
        if config.archive_path not in self.extracted_files:
            return
        records = self.extracted_files[config.archive_path]
        label = config.plural_label.capitalize()
        if not isinstance(records, list):
            errors.append(f"{label} data must be an array")
            return

        required = REQUIRED_RECORD_KEYS[config.name]
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                errors.append(f"Invalid {config.label} data at index {index}: not an object")
                continue
            missing = [key for key in required if not isinstance(record.get(key), str) or not record[key]]
            if missing:
                errors.append(
                    f"Invalid {config.label} data at index {index}: missing {', '.join(missing)}"
                )
                continue
            if config is USER and record.get("role", "VIEWER") not in VALID_ROLES:
                errors.append(f"Invalid user data at index {index}: unknown role {record.get('role')}")
            if config is RELATIONSHIP and record["type"] not in VALID_RELATIONSHIP_TYPES:
                errors.append(
                    f"Invalid relationship data at index {index}: unknown type {record['type']}"
                )
