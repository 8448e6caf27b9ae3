"""
Seed data script — creates a small demo family.

  - 1 admin user (admin@heirloom.local) and 1 member user
  - Family settings ("The Sharma Family")
  - 3 generations: grandparents, their two children, one spouse,
    and two grandchildren (7 people)
  - PARENT/CHILD edges in both directions, SPOUSE edges both ways
  - 1 pending suggestion from the member

Usage:
  python -m scripts.seed_data

  Or import and call seed_family() with a database session.
"""

import asyncio
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.core.config import settings
from app.models.core import FamilySettings, Person, Relationship, Suggestion
from app.models.infrastructure import User


# (key, first, last, birth year, living, gender)
PEOPLE = [
    ("ramesh", "Ramesh", "Sharma", 1940, False, "MALE"),
    ("kamala", "Kamala", "Sharma", 1944, True, "FEMALE"),
    ("anil", "Anil", "Sharma", 1968, True, "MALE"),
    ("sunita", "Sunita", "Sharma", 1970, True, "FEMALE"),
    ("priya", "Priya", "Verma", 1972, True, "FEMALE"),
    ("arjun", "Arjun", "Sharma", 1998, True, "MALE"),
    ("meera", "Meera", "Sharma", 2001, True, "FEMALE"),
]

# (parent, child)
PARENTS = [
    ("ramesh", "anil"), ("kamala", "anil"),
    ("ramesh", "priya"), ("kamala", "priya"),
    ("anil", "arjun"), ("sunita", "arjun"),
    ("anil", "meera"), ("sunita", "meera"),
]

SPOUSES = [("ramesh", "kamala"), ("anil", "sunita")]


def _year(year: int) -> datetime:
    return datetime(year, 1, 1, tzinfo=timezone.utc)


async def seed_family(db: AsyncSession) -> dict[str, str]:
    """Create the demo family. Returns ids keyed by short name."""
    ids: dict[str, str] = {}

    admin = User(id="user-admin", email="admin@heirloom.local", name="Family Admin", role="ADMIN")
    member = User(id="user-member", email="member@heirloom.local", name="Family Member", role="MEMBER")
    db.add_all([admin, member])
    db.add(FamilySettings(id="settings", family_name="The Sharma Family", locale="en"))
    ids["admin"] = admin.id
    ids["member"] = member.id

    for key, first, last, born, living, gender in PEOPLE:
        person = Person(
            id=f"person-{key}",
            first_name=first,
            last_name=last,
            date_of_birth=_year(born),
            is_living=living,
            gender=gender,
            created_by_id=admin.id,
        )
        db.add(person)
        ids[key] = person.id
    await db.flush()

    edges: list[tuple[str, str, str]] = []
    for parent, child in PARENTS:
        edges.append((child, parent, "PARENT"))
        edges.append((parent, child, "CHILD"))
    for a, b in SPOUSES:
        edges.append((a, b, "SPOUSE"))
        edges.append((b, a, "SPOUSE"))

    for person, related, rel_type in edges:
        db.add(Relationship(
            id=f"rel-{person}-{related}-{rel_type.lower()}",
            person_id=ids[person],
            related_person_id=ids[related],
            type=rel_type,
            marriage_date=_year(1965) if rel_type == "SPOUSE" and person in ("ramesh", "kamala") else None,
        ))

    db.add(Suggestion(
        id="suggestion-1",
        type="UPDATE",
        target_person_id=ids["ramesh"],
        suggested_data={"birthPlace": "Varanasi"},
        reason="Grandfather's birthplace from family records",
        submitted_by_id=member.id,
    ))
    await db.flush()

    print("Seeded The Sharma Family:")
    print(f"  Users:         2 (admin {ids['admin']})")
    print(f"  People:        {len(PEOPLE)}")
    print(f"  Relationships: {len(edges)}")
    print("  Suggestions:   1")

    return ids


# ─── CLI entry point ───────────────────────────────────────────

async def main():
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        async with session.begin():
            await seed_family(session)

    await engine.dispose()
    print("\nSeed complete.")


if __name__ == "__main__":
    asyncio.run(main())
