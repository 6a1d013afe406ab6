from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from sqlalchemy import select

from familytree.domain.models import Base, Marriage, Profile
from familytree.persistence.db import SessionLocal, engine


@dataclass(frozen=True)
class DemoPerson:
    # Stable ids keep the seed idempotent across runs.
    id: str
    name: str
    gender: str
    hid: str | None = None
    father_id: str | None = None
    mother_id: str | None = None
    sibling_order: int = 0
    role: str = "user"
    user_id: str | None = None


def build_demo_people() -> tuple[DemoPerson, ...]:
    # Three generations plus one married-in spouse per couple.
    return (
        DemoPerson(id="demo-root", name="عبدالله", gender="male", hid="1", role="super_admin", user_id="demo-admin"),
        DemoPerson(id="demo-root-wife", name="نورة", gender="female"),
        DemoPerson(
            id="demo-son",
            name="محمد",
            gender="male",
            hid="1.1",
            father_id="demo-root",
            mother_id="demo-root-wife",
            user_id="demo-user",
        ),
        DemoPerson(
            id="demo-daughter",
            name="سارة",
            gender="female",
            hid="1.2",
            father_id="demo-root",
            mother_id="demo-root-wife",
            sibling_order=1,
        ),
        DemoPerson(id="demo-son-wife", name="هند", gender="female"),
        DemoPerson(
            id="demo-grandson",
            name="خالد",
            gender="male",
            hid="1.1.1",
            father_id="demo-son",
            mother_id="demo-son-wife",
        ),
    )


def _generation(hid: str | None) -> int:
    return len(hid.split(".")) if hid else 1


async def seed_demo() -> int:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:
        existing = await session.execute(select(Profile.id).where(Profile.id == "demo-root").limit(1))
        if existing.scalar_one_or_none() is not None:
            print("Demo family already seeded; skipping.")
            return 0

        people = build_demo_people()
        # Parents precede children in the tuple, so FK order holds on flush.
        for person in people:
            session.add(
                Profile(
                    id=person.id,
                    hid=person.hid,
                    name=person.name,
                    gender=person.gender,
                    generation=_generation(person.hid),
                    sibling_order=person.sibling_order,
                    father_id=person.father_id,
                    mother_id=person.mother_id,
                    role=person.role,
                    user_id=person.user_id,
                    version=1,
                )
            )
            await session.flush()
        session.add_all(
            [
                Marriage(id="demo-marriage-root", husband_id="demo-root", wife_id="demo-root-wife", version=1),
                Marriage(id="demo-marriage-son", husband_id="demo-son", wife_id="demo-son-wife", version=1),
            ]
        )
        await session.commit()
        print(f"Seeded demo family with {len(people)} profiles.")
        return 0


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
