from __future__ import annotations

import asyncio
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskpipe.config import settings
from taskpipe.models import Base
from taskpipe.models.person import Person


# Persons are never created through the API; tasks reference these.
DEMO_PERSONS: tuple[str, ...] = (
    "Ana Souza",
    "Bruno Lima",
    "Carla Mendes",
    "Diego Alves",
    "Elisa Rocha",
)


@dataclass(frozen=True)
class SeedResult:
    person_ids: tuple[int, ...]


async def _get_or_create_person(session: AsyncSession, *, name: str) -> Person:
    res = await session.execute(select(Person).where(Person.name == name))
    person = res.scalars().first()

    if person is None:
        person = Person(name=name)
        session.add(person)
        await session.flush()

    return person


async def _seed(database_url: str) -> SeedResult:
    engine = create_async_engine(database_url, pool_pre_ping=True)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    # Schema migrations are out of scope; make sure the tables exist for dev.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_maker() as session:
        async with session.begin():
            persons = [await _get_or_create_person(session, name=name) for name in DEMO_PERSONS]

    await engine.dispose()
    return SeedResult(person_ids=tuple(p.id for p in persons))


def seed_dev_data(database_url: str | None = None) -> SeedResult:
    return asyncio.run(_seed(database_url or settings.database_url))


def main() -> None:
    result = seed_dev_data()
    print(f"seeded persons: {', '.join(str(i) for i in result.person_ids)}")


if __name__ == "__main__":
    main()
