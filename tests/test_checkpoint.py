from datetime import datetime, timedelta, timezone

import pytest

from langgraph.checkpoint.memory import MemorySaver

from proposal_engine.checkpoint import MemoryCheckpointStore, SaverCheckpointStore, build_checkpoint_store
from proposal_engine.checkpoint.postgres import get_psycopg_url, is_postgres_url
from proposal_engine.checkpoint.sql import SqlCheckpointStore
from proposal_engine.settings import Settings
from proposal_engine.state import (
    EvaluationResult,
    Phase,
    ProcessingStatus,
    RunSeed,
    SectionRef,
    WorkflowMessage,
    apply_update,
    new_workflow_state,
    utcnow,
)


def _state(thread_id="THR_ckpt"):
    state = new_workflow_state(
        thread_id,
        RunSeed(document_id="rfp-1", document_text="Solicitation", project_name="Literacy"),
        ["intro", "body"],
    )
    ref = SectionRef(section_id="intro")
    update = state.ref_update(
        ref,
        status=ProcessingStatus.APPROVED,
        content="Intro text",
        evaluation=EvaluationResult(score=0.9, passed=True, feedback="Good", threshold=0.8),
    )
    update["phase_results"] = {Phase.RESEARCH: {"summary": "Funder priorities", "items": [1, 2]}}
    update["messages"] = [WorkflowMessage(content="checkpoint test", metadata={"kind": "test"})]
    return apply_update(state, update)


@pytest.fixture
async def sql_store(tmp_path):
    store = SqlCheckpointStore(f"sqlite+aiosqlite:///{tmp_path / 'checkpoints.db'}")
    await store.setup()
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sql"])
async def any_store(request, sql_store):
    if request.param == "memory":
        return MemoryCheckpointStore()
    return sql_store


async def test_round_trip_is_deep_equal(any_store):
    state = _state()
    await any_store.put(state.thread_id, state)
    loaded = await any_store.get(state.thread_id)
    assert loaded == state
    assert loaded.model_dump() == state.model_dump()


async def test_get_unknown_thread_returns_none(any_store):
    assert await any_store.get("THR_missing") is None


async def test_put_appends_versions(any_store):
    state = _state()
    first = await any_store.put(state.thread_id, state)
    newer = apply_update(state, {"current_step": "research"})
    second = await any_store.put(state.thread_id, newer)

    assert (first.version, second.version) == (1, 2)
    assert (await any_store.get(state.thread_id)).current_step == "research"
    history = await any_store.history(state.thread_id)
    assert [record.version for record in history] == [1, 2]
    assert history[0].state.current_step is None


async def test_put_rejects_mismatched_thread(any_store):
    with pytest.raises(ValueError):
        await any_store.put("THR_other", _state())


async def test_delete_and_list(any_store):
    a, b = _state("THR_a"), _state("THR_b")
    await any_store.put(a.thread_id, a)
    await any_store.put(b.thread_id, b)

    assert sorted(await any_store.list()) == ["THR_a", "THR_b"]
    assert await any_store.list("THR_a") == ["THR_a"]

    assert await any_store.delete("THR_a") is True
    assert await any_store.delete("THR_a") is False
    assert await any_store.get("THR_a") is None
    assert await any_store.list() == ["THR_b"]


async def test_prune_drops_threads_idle_past_cutoff(any_store):
    state = _state("THR_old")
    await any_store.put(state.thread_id, state)

    assert await any_store.prune(utcnow() - timedelta(hours=1)) == []
    assert await any_store.prune(utcnow() + timedelta(seconds=1)) == ["THR_old"]
    assert await any_store.get("THR_old") is None


async def test_sql_store_accepts_naive_and_aware_timestamps(sql_store):
    naive = _state("THR_naive").model_copy(update={"updated_at": datetime(2020, 1, 1, 12, 0)})
    aware = _state("THR_aware").model_copy(
        update={"updated_at": datetime(2020, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))}
    )
    await sql_store.put(naive.thread_id, naive)
    await sql_store.put(aware.thread_id, aware)

    [record] = await sql_store.history("THR_naive")
    assert record.updated_at == datetime(2020, 1, 1, 12, 0, tzinfo=timezone.utc)
    [record] = await sql_store.history("THR_aware")
    assert record.updated_at == datetime(2020, 1, 1, 12, 0, tzinfo=timezone.utc)

    assert sorted(await sql_store.prune(datetime(2020, 1, 2))) == ["THR_aware", "THR_naive"]


async def test_memory_history_is_capped():
    store = MemoryCheckpointStore(max_versions=2)
    state = _state()
    for step in ["a", "b", "c", "d"]:
        record = await store.put(state.thread_id, apply_update(state, {"current_step": step}))

    assert record.version == 4
    history = await store.history(state.thread_id)
    assert [entry.version for entry in history] == [3, 4]
    assert [entry.state.current_step for entry in history] == ["c", "d"]
    assert (await store.get(state.thread_id)).current_step == "d"
    assert (await store.put(state.thread_id, state)).version == 5


def test_version_cap_must_be_positive():
    with pytest.raises(ValueError):
        MemoryCheckpointStore(max_versions=0)


async def test_any_langgraph_saver_backs_a_store():
    store = SaverCheckpointStore(MemorySaver())
    state = _state()
    await store.put(state.thread_id, state)
    await store.put(state.thread_id, apply_update(state, {"current_step": "research"}))

    assert await store.list() == [state.thread_id]
    assert [entry.version for entry in await store.history(state.thread_id)] == [1, 2]
    assert await store.delete(state.thread_id) is True
    assert await store.get(state.thread_id) is None


@pytest.mark.parametrize("url, expected", [
    ("postgresql+asyncpg://user:pw@db:5432/proposals", "postgresql://user:pw@db:5432/proposals"),
    ("postgresql+psycopg://db/proposals", "postgresql://db/proposals"),
    ("postgres://db/proposals", "postgres://db/proposals"),
])
def test_psycopg_url_drops_driver(url, expected):
    assert get_psycopg_url(url) == expected
    assert is_postgres_url(url)


def test_sqlite_url_is_not_postgres():
    assert not is_postgres_url("sqlite+aiosqlite:///checkpoints.db")


async def test_reads_return_independent_copies():
    store = MemoryCheckpointStore()
    state = _state()
    await store.put(state.thread_id, state)

    loaded = await store.get(state.thread_id)
    loaded.messages.clear()
    assert (await store.get(state.thread_id)).messages


async def test_build_store_falls_back_to_memory(caplog):
    store = await build_checkpoint_store(Settings(DATABASE_URL=""))
    assert isinstance(store, MemoryCheckpointStore)
    assert "in-memory checkpoint store" in caplog.text


async def test_build_store_uses_sql_when_configured(tmp_path):
    store = await build_checkpoint_store(
        Settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'configured.db'}", DEBUG=False)
    )
    try:
        assert isinstance(store, SqlCheckpointStore)
        state = _state()
        await store.put(state.thread_id, state)
        assert await store.get(state.thread_id) == state
    finally:
        await store.close()
