"""Pydantic schemas for backup validation, import, and history."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConflictResolutionStrategy(str, Enum):
    """How an import treats records that collide with existing rows."""
    SKIP = "skip"
    REPLACE = "replace"
    MERGE = "merge"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ─── Conflicts ────────────────────────────────────────────────

class Conflict(BaseModel):
    """
    A pre-detected collision between an incoming record and an existing one.

    new_data and existing_data are in archive shape (camelCase keys);
    conflict_fields names the archive keys whose values differ.
    """
    type: str = Field(
        ...,
        description="Entity type: person, user, relationship, suggestion, settings",
    )
    action: str = Field("update", description="'create' or 'update'")
    existing_id: str | None = None
    existing_data: dict[str, Any] | None = None
    new_data: dict[str, Any] = Field(default_factory=dict)
    conflict_fields: list[str] = Field(default_factory=list)
    severity: ConflictSeverity = ConflictSeverity.LOW
    description: str = ""

    @property
    def record_id(self) -> str | None:
        """The id the conflict is keyed on: the incoming id, else the existing one."""
        return self.new_data.get("id") or self.existing_id


class ConflictSummary(BaseModel):
    total_conflicts: int = 0
    conflicts_by_type: dict[str, int] = Field(default_factory=dict)
    conflicts_by_severity: dict[str, int] = Field(default_factory=dict)


# ─── Archive Metadata ─────────────────────────────────────────

class BackupStatistics(BaseModel):
    """Counts recorded in metadata.json at export time."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_people: int = 0
    total_relationships: int = 0
    total_users: int = 0
    total_suggestions: int = 0
    total_photos: int = 0
    audit_log_days: int = 0
    total_audit_logs: int = 0


class ImportedBy(BaseModel):
    """The user an import (or export) is attributed to."""
    id: str
    email: str
    name: str | None = None


class BackupMetadata(BaseModel):
    """Contents of metadata.json. Archive keys are camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: str
    exported_at: str
    exported_by: ImportedBy | None = None
    statistics: BackupStatistics
    data_files: list[str] = Field(default_factory=list)
    photo_directories: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Outcome of validating an uploaded archive (no writes performed)."""
    is_valid: bool
    metadata: BackupMetadata | None = None
    conflicts: list[Conflict] = Field(default_factory=list)
    statistics: ConflictSummary = Field(default_factory=ConflictSummary)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ─── Import ───────────────────────────────────────────────────

class BackupImportOptions(BaseModel):
    strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.SKIP
    create_backup_before_import: bool = True
    import_photos: bool = True
    import_audit_logs: bool = False


class ImportStatistics(BaseModel):
    """Per-import counters. Every field is always present, zero-filled."""
    people_imported: int = 0
    relationships_imported: int = 0
    users_imported: int = 0
    suggestions_imported: int = 0
    photos_imported: int = 0
    audit_logs_imported: int = 0
    conflicts_resolved: int = 0
    skipped_items: int = 0


class ImportOutcome(BaseModel):
    """What the conflict resolver returns for one pass."""
    statistics: ImportStatistics = Field(default_factory=ImportStatistics)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ImportResult(BaseModel):
    """Full response from the import endpoint."""
    success: bool
    imported_at: datetime
    imported_by: ImportedBy
    strategy: ConflictResolutionStrategy
    statistics: ImportStatistics
    backup_created: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ImportHistoryEntry(BaseModel):
    """One past import, read back from its summary audit row."""
    id: str
    imported_at: datetime
    imported_by: str
    strategy: str
    statistics: dict[str, Any] = Field(default_factory=dict)
    success: bool
    error: str | None = None
