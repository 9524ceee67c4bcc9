import json

import pytest

from taskpipe.crud.task import TaskCRUD
from taskpipe.database import SessionLocal
from taskpipe.services.cache_service import CacheService, person_key, task_key
from tests.fakes import BrokenRedis


class CountingTaskCRUD(TaskCRUD):
    def __init__(self) -> None:
        super().__init__()
        self.lookups: list[list[int]] = []

    async def get_by_ids(self, session, ids):
        self.lookups.append(list(ids))
        return await super().get_by_ids(session, ids)


def test_key_namespace():
    assert task_key(5) == "task:5"
    assert person_key(7) == "person:7"


@pytest.mark.anyio
async def test_miss_reads_store_and_caches_with_ttl(fake_redis, persons, make_task):
    task_id = make_task(person_id=persons["ana"], title="Fix valve")
    cache = CacheService(fake_redis, ttl_seconds=600)

    async with SessionLocal() as session:
        tasks = await cache.get_tasks(session, [task_id])

    assert [t.title for t in tasks] == ["Fix valve"]
    assert tasks[0].person is not None
    assert tasks[0].person.name == "Ana"

    cached = json.loads(fake_redis.data[f"task:{task_id}"])
    assert cached["title"] == "Fix valve"
    assert cached["personId"] == persons["ana"]
    assert fake_redis.ttls[f"task:{task_id}"] == 600


@pytest.mark.anyio
async def test_repeated_reads_within_ttl_skip_the_store(fake_redis, persons, make_task):
    task_id = make_task(person_id=persons["ana"])
    store = CountingTaskCRUD()
    cache = CacheService(fake_redis, tasks=store)

    async with SessionLocal() as session:
        first = await cache.get_tasks(session, [task_id])
        second = await cache.get_tasks(session, [task_id])
        third = await cache.get_tasks(session, [task_id])

    assert first == second == third
    assert store.lookups == [[task_id]]


@pytest.mark.anyio
async def test_missing_ids_are_omitted_and_not_cached(fake_redis, persons, make_task):
    task_id = make_task(person_id=persons["ana"])
    store = CountingTaskCRUD()
    cache = CacheService(fake_redis, tasks=store)

    async with SessionLocal() as session:
        tasks = await cache.get_tasks(session, [task_id, 404])
        again = await cache.get_tasks(session, [404])

    assert [t.id for t in tasks] == [task_id]
    assert again == []
    assert "task:404" not in fake_redis.data
    # No negative caching: the missing id goes back to the store every time.
    assert store.lookups == [[task_id], [404], [404]]


@pytest.mark.anyio
async def test_lookups_are_per_id(fake_redis, persons, make_task):
    a = make_task(person_id=persons["ana"], title="A")
    b = make_task(person_id=persons["bruno"], title="B")
    store = CountingTaskCRUD()
    cache = CacheService(fake_redis, tasks=store)

    async with SessionLocal() as session:
        await cache.get_tasks(session, [a])
        tasks = await cache.get_tasks(session, [a, b])

    assert [t.title for t in tasks] == ["A", "B"]
    assert store.lookups == [[a], [b]]


@pytest.mark.anyio
async def test_person_read_includes_tasks(fake_redis, persons, make_task):
    make_task(person_id=persons["bruno"], title="One")
    make_task(person_id=persons["bruno"], title="Two")
    cache = CacheService(fake_redis)

    async with SessionLocal() as session:
        result = await cache.get_persons(session, [persons["bruno"]])

    assert len(result) == 1
    assert result[0].name == "Bruno"
    assert sorted(t.title for t in result[0].tasks) == ["One", "Two"]
    assert f"person:{persons['bruno']}" in fake_redis.data


@pytest.mark.anyio
async def test_cached_value_is_served_without_the_store(fake_redis, persons):
    fake_redis.data["person:77"] = json.dumps({"id": 77, "name": "Only in cache", "tasks": []})
    cache = CacheService(fake_redis)

    async with SessionLocal() as session:
        result = await cache.get_persons(session, [77])

    assert [p.name for p in result] == ["Only in cache"]


@pytest.mark.anyio
async def test_unreadable_cache_entry_falls_back_to_store(fake_redis, persons):
    key = f"person:{persons['ana']}"
    fake_redis.data[key] = "{broken"
    cache = CacheService(fake_redis)

    async with SessionLocal() as session:
        result = await cache.get_persons(session, [persons["ana"]])

    assert [p.name for p in result] == ["Ana"]
    assert json.loads(fake_redis.data[key])["name"] == "Ana"


@pytest.mark.anyio
async def test_invalidate_deletes_keys_and_tolerates_absent_ones(fake_redis):
    fake_redis.data["task:1"] = "{}"
    cache = CacheService(fake_redis)

    await cache.invalidate("task:1", "person:2", "person:2")

    assert "task:1" not in fake_redis.data
    assert fake_redis.calls[-1] == ("delete", ("task:1", "person:2"))


@pytest.mark.anyio
async def test_cache_errors_propagate(persons):
    cache = CacheService(BrokenRedis())

    async with SessionLocal() as session:
        with pytest.raises(ConnectionError):
            await cache.get_persons(session, [persons["ana"]])
