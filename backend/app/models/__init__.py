"""All models must be imported here so SQLAlchemy registers them."""

from app.models.core import Person, Relationship, Suggestion, FamilySettings  # noqa: F401
from app.models.infrastructure import User, AuditLog  # noqa: F401
