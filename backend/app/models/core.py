"""
Core family-tree models: People, Relationships, Suggestions, Settings.

Row ids are strings carried over from the source archive on import,
so cross-references inside one backup stay consistent. Rows created
by the application itself get a uuid4 string.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Person(Base):
    """
    An identity in the family tree.

    Referenced by relationships, suggestions, and (softly) by users.
    Address and social fields are free-form JSON.
    """

    __tablename__ = "persons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    maiden_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_of_birth: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_of_passing: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    birth_place: Mapped[str | None] = mapped_column(String(500), nullable=True)
    native_place: Mapped[str | None] = mapped_column(String(500), nullable=True)
    gender: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="MALE, FEMALE, OTHER, PREFER_NOT_TO_SAY.",
    )
    photo_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    current_address: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    work_address: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    profession: Mapped[str | None] = mapped_column(String(255), nullable=True)
    employer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    social_links: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    is_living: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Soft reference to the user who created this person.",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_persons_name", "last_name", "first_name"),
        Index("idx_persons_created_by", "created_by_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Person {self.full_name}>"


class Relationship(Base):
    """
    Directed edge between two people (PARENT, CHILD, SPOUSE, SIBLING).

    The inverse edge is a separate row maintained by the application,
    not by the importer.
    """

    __tablename__ = "relationships"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    person_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("persons.id", ondelete="CASCADE"),
        nullable=False,
    )
    related_person_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("persons.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    marriage_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    divorce_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    person: Mapped["Person"] = relationship("Person", foreign_keys=[person_id])
    related_person: Mapped["Person"] = relationship("Person", foreign_keys=[related_person_id])

    __table_args__ = (
        UniqueConstraint("person_id", "related_person_id", "type", name="uq_relationships_pair_type"),
        Index("idx_relationships_person", "person_id"),
        Index("idx_relationships_related", "related_person_id"),
    )

    def __repr__(self) -> str:
        return f"<Relationship {self.person_id} -{self.type}-> {self.related_person_id}>"


class Suggestion(Base):
    """A proposed edit to a person, submitted by a user for review."""

    __tablename__ = "suggestions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="CREATE, UPDATE, DELETE, ADD_RELATIONSHIP.",
    )
    target_person_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("persons.id", ondelete="SET NULL"),
        nullable=True,
    )
    suggested_data: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    submitted_by_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id"),
        nullable=False,
    )
    reviewed_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_suggestions_status", "status"),
        Index("idx_suggestions_submitter", "submitted_by_id"),
        Index("idx_suggestions_target", "target_person_id"),
    )

    def __repr__(self) -> str:
        return f"<Suggestion {self.type} {self.status}>"


class FamilySettings(Base):
    """Singleton family configuration. At most one row exists."""

    __tablename__ = "family_settings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    family_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Our Family")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    locale: Mapped[str] = mapped_column(String(10), nullable=False, default="en")
    custom_labels: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    default_privacy: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="MEMBERS_ONLY",
        comment="PUBLIC, MEMBERS_ONLY, ADMIN_ONLY.",
    )
    allow_self_registration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    require_approval_for_edits: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<FamilySettings {self.family_name}>"
