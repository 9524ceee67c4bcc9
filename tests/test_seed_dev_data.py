from sqlalchemy import func, select

from taskpipe.config import settings
from taskpipe.models.person import Person
from taskpipe.scripts.seed_dev_data import DEMO_PERSONS, seed_dev_data


def test_seed_dev_data_is_idempotent_and_creates_demo_persons(db):
    # Run twice to assert idempotency.
    r1 = seed_dev_data(settings.database_url)
    r2 = seed_dev_data(settings.database_url)

    assert r1.person_ids == r2.person_ids
    assert len(r1.person_ids) == len(DEMO_PERSONS)

    with db() as session:
        count = session.execute(select(func.count()).select_from(Person)).scalar_one()
        names = set(session.execute(select(Person.name)).scalars())

    assert count == len(DEMO_PERSONS)
    assert names == set(DEMO_PERSONS)
