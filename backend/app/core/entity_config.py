"""
Importable entity configuration.

Each entity a backup archive carries is described once here, and the
import, snapshot, and audit code paths are driven from that description
instead of repeating per-entity branches.

Each entity defines:
  - where it lives in the archive (data/<name>.json)
  - which ORM model it maps to
  - which fields it carries, with their data type, requiredness and
    the default applied when the archive omits them
  - which ImportStatistics counter it feeds
  - how to name a record in warnings and errors

Archive keys are the camelCase form of the model attribute names
(first_name ↔ firstName). The conversion is mechanical.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic.alias_generators import to_camel

from app.core.database import Base
from app.models.core import FamilySettings, Person, Relationship, Suggestion
from app.models.infrastructure import AuditLog, User


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FieldDef:
    """Definition of one importable field on an entity."""
    name: str
    data_type: str = "string"  # string, datetime, boolean, json
    required: bool = False
    default: Any = None  # value, or zero-arg callable

    @property
    def archive_key(self) -> str:
        return to_camel(self.name)

    def default_value(self) -> Any:
        return self.default() if callable(self.default) else self.default


@dataclass(frozen=True)
class EntityConfig:
    """Configuration for an importable entity."""
    name: str  # conflict type: person, user, ...
    label: str  # used in human-readable messages
    plural_label: str
    archive_path: str
    model: type[Base]
    fields: list[FieldDef] = field(default_factory=list)
    # ImportStatistics attribute incremented on a plain import
    stat_field: str | None = None
    display: Callable[[dict[str, Any]], str] = lambda data: str(data.get("id"))

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


# ─── Value Conversion ─────────────────────────────────────────

def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 archive timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_value(field_def: FieldDef, value: Any) -> Any:
    """Convert one archive value to its model attribute value."""
    if value is None:
        return None
    if field_def.data_type == "datetime":
        return parse_datetime(value)
    if field_def.data_type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValueError(f"{field_def.archive_key} must be a boolean, got {value!r}")
    return value


def serialize_value(value: Any) -> Any:
    """Convert one model attribute value to its JSON archive form."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat().replace("+00:00", "Z")
    return value


# ─── Payload Preparation ──────────────────────────────────────

def create_payload(config: EntityConfig, data: dict[str, Any]) -> dict[str, Any]:
    """
    Attribute values for a new row built from an archive record.

    Absent or null values fall back to the field default. A required
    field with neither is left None and fails at flush.
    """
    payload: dict[str, Any] = {}
    for f in config.fields:
        value = parse_value(f, data.get(f.archive_key))
        if value is None:
            value = f.default_value()
        payload[f.name] = value
    return payload


def replace_payload(config: EntityConfig, data: dict[str, Any]) -> dict[str, Any]:
    """
    Attribute values that overwrite an existing row wholesale.

    Every optional field takes the incoming value, so fields the archive
    omits are cleared (or reset to their default). Required fields the
    archive omits keep their stored value. The id is never rewritten.
    """
    payload: dict[str, Any] = {}
    for f in config.fields:
        if f.name == "id":
            continue
        value = parse_value(f, data.get(f.archive_key))
        if value is None:
            if f.required:
                continue
            value = f.default_value()
        payload[f.name] = value
    return payload


def merge_payload(config: EntityConfig, data: dict[str, Any]) -> dict[str, Any]:
    """
    Attribute values that override an existing row in a merge.

    Only fields present and non-null in the incoming record are returned;
    everything else keeps its existing value.
    """
    payload: dict[str, Any] = {}
    for f in config.fields:
        if f.name == "id":
            continue
        raw = data.get(f.archive_key)
        if raw is None:
            continue
        payload[f.name] = parse_value(f, raw)
    return payload


def to_archive(config: EntityConfig, row: Any) -> dict[str, Any]:
    """Serialize a model row to its archive (camelCase JSON) shape."""
    return {f.archive_key: serialize_value(getattr(row, f.name)) for f in config.fields}


# ─── Entity Registry ──────────────────────────────────────────

ENTITIES: dict[str, EntityConfig] = {}


def register_entity(config: EntityConfig) -> EntityConfig:
    """Register an importable entity configuration."""
    ENTITIES[config.name] = config
    return config


def get_entity_config(name: str) -> EntityConfig | None:
    """Look up configuration for an entity name."""
    return ENTITIES.get(name)


def _person_name(data: dict[str, Any]) -> str:
    return f"{data.get('firstName') or ''} {data.get('lastName') or ''}".strip()


SETTINGS = register_entity(EntityConfig(
    name="settings",
    label="family settings",
    plural_label="settings",
    archive_path="data/settings.json",
    model=FamilySettings,
    fields=[
        FieldDef("family_name", required=True, default="My Family"),
        FieldDef("description"),
        FieldDef("locale", required=True, default="en"),
        FieldDef("custom_labels", "json"),
        FieldDef("default_privacy", required=True, default="MEMBERS_ONLY"),
        FieldDef("allow_self_registration", "boolean", required=True, default=True),
        FieldDef("require_approval_for_edits", "boolean", required=True, default=True),
    ],
    display=lambda data: "",
))

PERSON = register_entity(EntityConfig(
    name="person",
    label="person",
    plural_label="people",
    archive_path="data/people.json",
    model=Person,
    fields=[
        FieldDef("id", required=True),
        FieldDef("first_name", required=True),
        FieldDef("last_name", required=True),
        FieldDef("maiden_name"),
        FieldDef("date_of_birth", "datetime"),
        FieldDef("date_of_passing", "datetime"),
        FieldDef("birth_place"),
        FieldDef("native_place"),
        FieldDef("gender"),
        FieldDef("photo_url"),
        FieldDef("bio"),
        FieldDef("email"),
        FieldDef("phone"),
        FieldDef("current_address", "json"),
        FieldDef("work_address", "json"),
        FieldDef("profession"),
        FieldDef("employer"),
        FieldDef("social_links", "json"),
        FieldDef("is_living", "boolean", required=True, default=True),
        FieldDef("created_by_id"),
        FieldDef("created_at", "datetime", required=True, default=_now),
        FieldDef("updated_at", "datetime", required=True, default=_now),
    ],
    stat_field="people_imported",
    display=_person_name,
))

USER = register_entity(EntityConfig(
    name="user",
    label="user",
    plural_label="users",
    archive_path="data/users.json",
    model=User,
    fields=[
        FieldDef("id", required=True),
        FieldDef("email", required=True),
        FieldDef("name"),
        FieldDef("person_id"),
        FieldDef("role", required=True, default="VIEWER"),
        FieldDef("is_active", "boolean", required=True, default=True),
        FieldDef("must_change_password", "boolean", required=True, default=False),
        FieldDef("invited_by_id"),
        FieldDef("created_at", "datetime", required=True, default=_now),
        FieldDef("updated_at", "datetime", required=True, default=_now),
        FieldDef("last_login_at", "datetime"),
    ],
    stat_field="users_imported",
    display=lambda data: str(data.get("email")),
))

RELATIONSHIP = register_entity(EntityConfig(
    name="relationship",
    label="relationship",
    plural_label="relationships",
    archive_path="data/relationships.json",
    model=Relationship,
    fields=[
        FieldDef("id", required=True),
        FieldDef("person_id", required=True),
        FieldDef("related_person_id", required=True),
        FieldDef("type", required=True),
        FieldDef("marriage_date", "datetime"),
        FieldDef("divorce_date", "datetime"),
        FieldDef("is_active", "boolean", required=True, default=True),
        FieldDef("created_at", "datetime", required=True, default=_now),
        FieldDef("updated_at", "datetime", required=True, default=_now),
    ],
    stat_field="relationships_imported",
))

SUGGESTION = register_entity(EntityConfig(
    name="suggestion",
    label="suggestion",
    plural_label="suggestions",
    archive_path="data/suggestions.json",
    model=Suggestion,
    fields=[
        FieldDef("id", required=True),
        FieldDef("type", required=True),
        FieldDef("target_person_id"),
        FieldDef("suggested_data", "json", required=True, default=dict),
        FieldDef("reason"),
        FieldDef("status", required=True, default="PENDING"),
        FieldDef("submitted_by_id", required=True),
        FieldDef("reviewed_by_id"),
        FieldDef("review_note"),
        FieldDef("submitted_at", "datetime", required=True, default=_now),
        FieldDef("reviewed_at", "datetime"),
    ],
    stat_field="suggestions_imported",
))

AUDIT_LOG = register_entity(EntityConfig(
    name="audit_log",
    label="audit log",
    plural_label="audit logs",
    archive_path="data/audit-logs.json",
    model=AuditLog,
    fields=[
        FieldDef("id", required=True),
        FieldDef("user_id", required=True),
        FieldDef("action", required=True),
        FieldDef("entity_type", required=True),
        FieldDef("entity_id"),
        FieldDef("previous_data", "json"),
        FieldDef("new_data", "json"),
        FieldDef("ip_address"),
        FieldDef("user_agent"),
        FieldDef("created_at", "datetime", required=True, default=_now),
    ],
    stat_field="audit_logs_imported",
))
