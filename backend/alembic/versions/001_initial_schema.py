"""Initial schema: family tree tables + users and audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True),
                      nullable=False, server_default=sa.func.now()),
        )
    return columns


def upgrade() -> None:
    # ── Family settings (singleton) ─────────────────────────
    op.create_table(
        "family_settings",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("family_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("locale", sa.String(10), nullable=False),
        sa.Column("custom_labels", JSONB, nullable=True),
        sa.Column("default_privacy", sa.String(20), nullable=False),
        sa.Column("allow_self_registration", sa.Boolean, nullable=False),
        sa.Column("require_approval_for_edits", sa.Boolean, nullable=False),
        *_timestamps(),
    )

    # ── Persons ─────────────────────────────────────────────
    op.create_table(
        "persons",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("first_name", sa.String(255), nullable=False),
        sa.Column("last_name", sa.String(255), nullable=False),
        sa.Column("maiden_name", sa.String(255), nullable=True),
        sa.Column("date_of_birth", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_of_passing", sa.DateTime(timezone=True), nullable=True),
        sa.Column("birth_place", sa.String(500), nullable=True),
        sa.Column("native_place", sa.String(500), nullable=True),
        sa.Column("gender", sa.String(20), nullable=True),
        sa.Column("photo_url", sa.String(1000), nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("current_address", JSONB, nullable=True),
        sa.Column("work_address", JSONB, nullable=True),
        sa.Column("profession", sa.String(255), nullable=True),
        sa.Column("employer", sa.String(255), nullable=True),
        sa.Column("social_links", JSONB, nullable=True),
        sa.Column("is_living", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by_id", sa.String(64), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_persons_name", "persons", ["last_name", "first_name"])
    op.create_index("idx_persons_created_by", "persons", ["created_by_id"])

    # ── Users (person_id is a soft link, no FK) ─────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("person_id", sa.String(64), nullable=True, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="VIEWER"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("must_change_password", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("invited_by_id", sa.String(64), nullable=True),
        *_timestamps(),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_users_person", "users", ["person_id"])

    # ── Relationships ───────────────────────────────────────
    op.create_table(
        "relationships",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("person_id", sa.String(64),
                  sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("related_person_id", sa.String(64),
                  sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("marriage_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("divorce_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("person_id", "related_person_id", "type",
                            name="uq_relationships_pair_type"),
    )
    op.create_index("idx_relationships_person", "relationships", ["person_id"])
    op.create_index("idx_relationships_related", "relationships", ["related_person_id"])

    # ── Suggestions ─────────────────────────────────────────
    op.create_table(
        "suggestions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("target_person_id", sa.String(64),
                  sa.ForeignKey("persons.id", ondelete="SET NULL"), nullable=True),
        sa.Column("suggested_data", JSONB, nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("submitted_by_id", sa.String(64),
                  sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reviewed_by_id", sa.String(64), nullable=True),
        sa.Column("review_note", sa.Text, nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True),
                  nullable=False, server_default=sa.func.now()),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_suggestions_status", "suggestions", ["status"])
    op.create_index("idx_suggestions_submitter", "suggestions", ["submitted_by_id"])
    op.create_index("idx_suggestions_target", "suggestions", ["target_person_id"])

    # ── Audit log (append-only) ─────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64),
                  sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("previous_data", JSONB, nullable=True),
        sa.Column("new_data", JSONB, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("idx_audit_logs_user", "audit_logs", ["user_id"])
    op.create_index("idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_logs_created", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("suggestions")
    op.drop_table("relationships")
    op.drop_table("users")
    op.drop_table("persons")
    op.drop_table("family_settings")
