"""
Tests for the SQL record store against a file-backed SQLite database.

A file (not :memory:) so that every session gets its own connection, which
lets the tests interleave writers the way two processes would.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from registrar.core.config import Settings
from registrar.core.errors import ConcurrentUpdateError
from registrar.db.base import Base
from registrar.db.session import create_session_factory
from registrar.services.interfaces.memory_store import InMemoryRecordStore
from registrar.services.interfaces.record_store import DuplicateRecordError
from registrar.services.retry_service import RETRY_KIND, RetryConfig, RetryOrchestrator
from registrar.services.sql_record_store import SqlRecordStore
from registrar.services.store_factory import get_record_store
from registrar.schemas.retry import RetryStatus

from conftest import make_intent


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def sql_store(engine: AsyncEngine) -> SqlRecordStore:
    return SqlRecordStore(create_session_factory(engine))


def _record(record_id: str, user_id: str = "user-1", status: str = "pending") -> dict:
    return {"id": record_id, "user_id": user_id, "status": status, "notes": []}


@pytest.mark.asyncio
async def test_create_and_get(sql_store):
    await sql_store.create_record(RETRY_KIND, _record("r1"))

    assert await sql_store.get_record(RETRY_KIND, "r1") == _record("r1")
    assert await sql_store.get_record(RETRY_KIND, "missing") is None
    # Kinds are separate key spaces
    assert await sql_store.get_record("registration", "r1") is None


@pytest.mark.asyncio
async def test_duplicate_create_rejected(sql_store):
    await sql_store.create_record(RETRY_KIND, _record("r1"))
    with pytest.raises(DuplicateRecordError):
        await sql_store.create_record(RETRY_KIND, _record("r1"))


@pytest.mark.asyncio
async def test_update_applies_mutation(sql_store):
    await sql_store.create_record(RETRY_KIND, _record("r1"))

    def finish(data):
        data["status"] = "success"
        return data

    updated = await sql_store.update_record(RETRY_KIND, "r1", finish)

    assert updated["status"] == "success"
    assert await sql_store.query_by_status(RETRY_KIND, ["pending"]) == []
    assert [r["id"] for r in await sql_store.query_by_status(RETRY_KIND, ["success"])] == ["r1"]


@pytest.mark.asyncio
async def test_update_noop_and_missing(sql_store):
    await sql_store.create_record(RETRY_KIND, _record("r1"))

    assert await sql_store.update_record(RETRY_KIND, "r1", lambda data: None) == _record("r1")
    assert await sql_store.update_record(RETRY_KIND, "missing", lambda data: data) is None


@pytest.mark.asyncio
async def test_version_conflict_reapplies_mutation(sql_store, engine):
    """A writer that lands between read and write forces a re-read, not a lost update."""
    await sql_store.create_record(RETRY_KIND, _record("r1"))
    rival = SqlRecordStore(create_session_factory(engine))
    seen = []

    original_load = SqlRecordStore._load

    async def racing_load(session, kind, record_id):
        row = await original_load(session, kind, record_id)
        if not seen:
            seen.append("raced")

            def rival_note(data):
                data["notes"].append("rival")
                return data

            await rival.update_record(kind, record_id, rival_note)
        return row

    def add_note(data):
        seen.append(list(data["notes"]))
        data["notes"].append("mine")
        return data

    sql_store._load = racing_load
    updated = await sql_store.update_record(RETRY_KIND, "r1", add_note)

    assert updated["notes"] == ["rival", "mine"]
    # First pass saw the stale state, second pass the rival's write
    assert seen[1:] == [[], ["rival"]]


@pytest.mark.asyncio
async def test_update_gives_up_after_budget(engine):
    store = SqlRecordStore(create_session_factory(engine), max_update_attempts=2)
    await store.create_record(RETRY_KIND, _record("r1"))
    rival = SqlRecordStore(create_session_factory(engine))
    original_load = SqlRecordStore._load

    async def always_racing_load(session, kind, record_id):
        row = await original_load(session, kind, record_id)
        await rival.update_record(kind, record_id, lambda data: {**data, "notes": data["notes"] + ["x"]})
        return row

    store._load = always_racing_load
    with pytest.raises(ConcurrentUpdateError):
        await store.update_record(RETRY_KIND, "r1", lambda data: {**data, "status": "failed"})


@pytest.mark.asyncio
async def test_query_by_user(sql_store):
    await sql_store.create_record(RETRY_KIND, _record("r1", user_id="alice"))
    await sql_store.create_record(RETRY_KIND, _record("r2", user_id="bob"))
    await sql_store.create_record(RETRY_KIND, _record("r3", user_id="alice", status="failed"))

    records = await sql_store.query_by_user(RETRY_KIND, "alice")
    assert sorted(r["id"] for r in records) == ["r1", "r3"]


@pytest.mark.asyncio
async def test_retry_records_survive_a_new_orchestrator(fake_backend, registration_orchestrator, sql_store, engine):
    """Pending work written by one process is resumed by the next."""
    fake_backend.fail_orders = [503]
    first = RetryOrchestrator(registration_orchestrator, sql_store, RetryConfig(base_delay_ms=60_000))
    submission = await first.submit("user-1", make_intent())
    assert submission.status is RetryStatus.PENDING
    await first.shutdown()

    second = RetryOrchestrator(
        registration_orchestrator,
        SqlRecordStore(create_session_factory(engine)),
        RetryConfig(base_delay_ms=1),
    )
    assert await second.resume_pending() == 1
    await second.scheduler.join()

    record = await second.get_retry_record(submission.retry_id)
    assert record.status is RetryStatus.SUCCESS
    assert len(record.attempts) == 2


@pytest.mark.asyncio
async def test_store_factory_selects_backend(engine):
    assert isinstance(get_record_store(Settings(RECORD_STORE="memory")), InMemoryRecordStore)
    assert isinstance(get_record_store(Settings(RECORD_STORE="sql"), create_session_factory(engine)), SqlRecordStore)
    with pytest.raises(ValueError):
        get_record_store(Settings(RECORD_STORE="sql"))
    with pytest.raises(ValueError):
        get_record_store(Settings(RECORD_STORE="redis"))
