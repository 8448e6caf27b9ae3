"""
Conflict detection for an extracted backup archive.

Compares every incoming record with the database and produces the
conflict catalog the resolver consumes. Nothing is written.

Severity:
  low     the existing row already holds the incoming values
  medium  the existing row differs on one or more fields
  high    the record would collide with a different identity
          (a person renamed beyond recognition, an email or a
          relationship owned by another id)

Timestamps the application maintains (created_at, updated_at) are not
compared.
"""

from collections import Counter
from typing import Any, Mapping

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.entity_config import (
    PERSON,
    RELATIONSHIP,
    SETTINGS,
    SUGGESTION,
    USER,
    EntityConfig,
    parse_datetime,
    to_archive,
)
from app.models.core import FamilySettings, Relationship
from app.models.infrastructure import User
from app.schemas.backup import Conflict, ConflictSeverity, ConflictSummary
from app.services.normalization import values_match

IGNORED_FIELDS = {"id", "created_at", "updated_at"}


def find_differences(config: EntityConfig, existing: dict[str, Any], incoming: dict[str, Any]) -> list[str]:
    """Archive keys whose incoming value differs from the stored one."""
    differences = []
    for f in config.fields:
        if f.name in IGNORED_FIELDS or f.archive_key not in incoming:
            continue
        old, new = existing.get(f.archive_key), incoming.get(f.archive_key)
        if f.data_type == "datetime" and old and new:
            try:
                if parse_datetime(old) == parse_datetime(new):
                    continue
            except ValueError:
                pass
        if not values_match(old, new):
            differences.append(f.archive_key)
    return differences


def _records(extracted_files: Mapping[str, Any], config: EntityConfig) -> list[dict[str, Any]]:
    records = extracted_files.get(config.archive_path)
    if not isinstance(records, list):
        return []
    return [r for r in records if isinstance(r, dict) and r.get("id") and isinstance(r["id"], str)]


def _id_conflict(
    config: EntityConfig,
    existing_row: Any,
    incoming: dict[str, Any],
    description: str,
) -> Conflict:
    existing = to_archive(config, existing_row)
    differences = find_differences(config, existing, incoming)
    return Conflict(
        type=config.name,
        action="update",
        existing_id=existing_row.id,
        existing_data=existing,
        new_data=incoming,
        conflict_fields=differences,
        severity=ConflictSeverity.MEDIUM if differences else ConflictSeverity.LOW,
        description=description,
    )


# ─── Per-Entity Detection ─────────────────────────────────────

async def _settings_conflicts(db: AsyncSession, extracted_files: Mapping[str, Any]) -> list[Conflict]:
    incoming = extracted_files.get(SETTINGS.archive_path)
    if not isinstance(incoming, dict):
        return []
    result = await db.execute(
        select(FamilySettings).limit(1).execution_options(populate_existing=True)
    )
    existing_row = result.scalar_one_or_none()
    if existing_row is None:
        return []
    return [_id_conflict(SETTINGS, existing_row, incoming, "Family settings already exist")]


async def _person_conflicts(db: AsyncSession, extracted_files: Mapping[str, Any]) -> list[Conflict]:
    conflicts = []
    for incoming in _records(extracted_files, PERSON):
        existing_row = await db.get(PERSON.model, incoming["id"], populate_existing=True)
        if existing_row is None:
            continue
        conflict = _id_conflict(
            PERSON, existing_row, incoming,
            f"Person {existing_row.full_name} already exists",
        )
        if {"firstName", "lastName"} <= set(conflict.conflict_fields):
            conflict.severity = ConflictSeverity.HIGH
            conflict.description = (
                f"Person {incoming['id']} is {existing_row.full_name} here "
                f"but {PERSON.display(incoming)} in the backup"
            )
        conflicts.append(conflict)
    return conflicts


async def _user_conflicts(db: AsyncSession, extracted_files: Mapping[str, Any]) -> list[Conflict]:
    conflicts = []
    for incoming in _records(extracted_files, USER):
        existing_row = await db.get(User, incoming["id"], populate_existing=True)
        if existing_row is not None:
            conflicts.append(_id_conflict(
                USER, existing_row, incoming, f"User {existing_row.email} already exists",
            ))
            continue

        email = incoming.get("email")
        if not email:
            continue
        owner = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if owner is not None:
            conflicts.append(Conflict(
                type=USER.name,
                action="create",
                existing_id=owner.id,
                existing_data=to_archive(USER, owner),
                new_data=incoming,
                conflict_fields=["email"],
                severity=ConflictSeverity.HIGH,
                description=f"Email {email} already belongs to another user",
            ))
    return conflicts


async def _relationship_conflicts(db: AsyncSession, extracted_files: Mapping[str, Any]) -> list[Conflict]:
    conflicts = []
    for incoming in _records(extracted_files, RELATIONSHIP):
        existing_row = await db.get(Relationship, incoming["id"], populate_existing=True)
        if existing_row is not None:
            conflicts.append(_id_conflict(
                RELATIONSHIP, existing_row, incoming,
                f"Relationship {incoming['id']} already exists",
            ))
            continue

        result = await db.execute(
            select(Relationship).where(
                and_(
                    Relationship.person_id == incoming.get("personId"),
                    Relationship.related_person_id == incoming.get("relatedPersonId"),
                    Relationship.type == incoming.get("type"),
                )
            )
        )
        owner = result.scalar_one_or_none()
        if owner is not None:
            conflicts.append(Conflict(
                type=RELATIONSHIP.name,
                action="create",
                existing_id=owner.id,
                existing_data=to_archive(RELATIONSHIP, owner),
                new_data=incoming,
                conflict_fields=["personId", "relatedPersonId", "type"],
                severity=ConflictSeverity.HIGH,
                description=(
                    f"A {incoming.get('type')} relationship between these people "
                    f"already exists as {owner.id}"
                ),
            ))
    return conflicts


async def _suggestion_conflicts(db: AsyncSession, extracted_files: Mapping[str, Any]) -> list[Conflict]:
    conflicts = []
    for incoming in _records(extracted_files, SUGGESTION):
        existing_row = await db.get(SUGGESTION.model, incoming["id"], populate_existing=True)
        if existing_row is not None:
            conflicts.append(_id_conflict(
                SUGGESTION, existing_row, incoming,
                f"Suggestion {incoming['id']} already exists",
            ))
    return conflicts


# ─── Entry Points ─────────────────────────────────────────────

async def detect_conflicts(db: AsyncSession, extracted_files: Mapping[str, Any]) -> list[Conflict]:
    """Build the conflict catalog for an archive, in import order."""
    conflicts: list[Conflict] = []
    conflicts.extend(await _settings_conflicts(db, extracted_files))
    conflicts.extend(await _person_conflicts(db, extracted_files))
    conflicts.extend(await _user_conflicts(db, extracted_files))
    conflicts.extend(await _relationship_conflicts(db, extracted_files))
    conflicts.extend(await _suggestion_conflicts(db, extracted_files))
    return conflicts


def summarize_conflicts(conflicts: list[Conflict]) -> ConflictSummary:
    return ConflictSummary(
        total_conflicts=len(conflicts),
        conflicts_by_type=dict(Counter(c.type for c in conflicts)),
        conflicts_by_severity=dict(Counter(c.severity.value for c in conflicts)),
    )
