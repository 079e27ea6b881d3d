import asyncio

import pytest

from backend.app.db.session import DuckDBPool, StoreConnectionError
from backend.app.rag.seed import StaticSeedProvider
from backend.app.rag.store import DuckDBVectorStore, InMemoryVectorStore
from backend.app.rag.vectors import DimensionMismatchError
from conftest import DIM, make_passage


def _duckdb_store(dimension=DIM, dsn=":memory:"):
    return DuckDBVectorStore(DuckDBPool(dsn, pool_size=2), dimension=dimension)


@pytest.fixture(params=["duckdb", "in_memory"])
def make_store(request):
    def factory(dimension=DIM):
        if request.param == "duckdb":
            return _duckdb_store(dimension)
        return InMemoryVectorStore(dimension)

    return factory


def _run(coro):
    return asyncio.run(coro)


def test_query_orders_by_distance_and_caps_at_k(make_store, resume_passages):
    async def scenario():
        store = make_store()
        try:
            await store.upsert(resume_passages)
            top2 = await store.query([1.0, 0.0, 0.0, 0.0], 2)
            top10 = await store.query([1.0, 0.0, 0.0, 0.0], 10)
        finally:
            await store.aclose()
        return top2, top10

    top2, top10 = _run(scenario())

    # edu-1 and skills-1 are both orthogonal to the query; the id breaks the tie.
    assert [c.id for c in top2] == ["exp-1", "edu-1"]
    assert len(top10) == len(resume_passages)
    distances = [c.distance for c in top10]
    assert distances == sorted(distances)
    assert [c.rank for c in top10] == [1, 2, 3]
    assert top10[0].id == "exp-1"
    assert top10[0].section == "experience"
    assert "Acme Corp" in top10[0].text


def test_equal_distances_are_ordered_by_id(make_store):
    async def scenario():
        store = make_store()
        try:
            await store.upsert(
                [
                    make_passage("c", [0.0, 1.0, 0.0, 0.0]),
                    make_passage("a", [0.0, 1.0, 0.0, 0.0]),
                    make_passage("b", [0.0, 1.0, 0.0, 0.0]),
                ]
            )
            return await store.query([0.0, 1.0, 0.0, 0.0], 3)
        finally:
            await store.aclose()

    assert [c.id for c in _run(scenario())] == ["a", "b", "c"]


def test_upsert_is_idempotent_and_updates_in_place(make_store):
    async def scenario():
        store = make_store()
        try:
            await store.upsert([make_passage("p1", [1.0, 0.0, 0.0, 0.0], text="old text")])
            await store.upsert([make_passage("p1", [1.0, 0.0, 0.0, 0.0], text="old text")])
            await store.upsert([make_passage("p1", [0.0, 0.0, 0.0, 1.0], text="new text")])
            count = await store.count()
            (chunk,) = await store.query([0.0, 0.0, 0.0, 1.0], 5)
        finally:
            await store.aclose()
        return count, chunk

    count, chunk = _run(scenario())
    assert count == 1
    assert chunk.text == "new text"
    assert chunk.distance == pytest.approx(0.0, abs=1e-6)


def test_duplicate_ids_in_one_batch_keep_the_last(make_store):
    async def scenario():
        store = make_store()
        try:
            await store.upsert(
                [
                    make_passage("p1", [1.0, 0.0, 0.0, 0.0], text="first"),
                    make_passage("p1", [1.0, 0.0, 0.0, 0.0], text="second"),
                ]
            )
            return await store.query([1.0, 0.0, 0.0, 0.0], 5)
        finally:
            await store.aclose()

    (chunk,) = _run(scenario())
    assert chunk.text == "second"


def test_batch_with_wrong_dimension_writes_nothing(make_store):
    async def scenario():
        store = make_store()
        try:
            with pytest.raises(DimensionMismatchError):
                await store.upsert(
                    [
                        make_passage("ok", [1.0, 0.0, 0.0, 0.0]),
                        make_passage("bad", [1.0, 0.0, 0.0]),
                    ]
                )
            return await store.count()
        finally:
            await store.aclose()

    assert _run(scenario()) == 0


def test_query_rejects_bad_k_and_wrong_dimension(make_store, resume_passages):
    async def scenario():
        store = make_store()
        try:
            await store.upsert(resume_passages)
            with pytest.raises(ValueError):
                await store.query([1.0, 0.0, 0.0, 0.0], 0)
            with pytest.raises(DimensionMismatchError):
                await store.query([1.0, 0.0], 3)
        finally:
            await store.aclose()

    _run(scenario())


def test_empty_store_returns_no_chunks(make_store):
    async def scenario():
        store = make_store()
        try:
            return await store.query([1.0, 0.0, 0.0, 0.0], 6)
        finally:
            await store.aclose()

    assert _run(scenario()) == []


def test_concurrent_bootstrap_loads_seed_once(make_store, resume_passages):
    seed = StaticSeedProvider(resume_passages)

    async def scenario():
        store = make_store()
        try:
            loaded = await asyncio.gather(
                *(store.ensure_bootstrapped(seed) for _ in range(8))
            )
            return loaded, await store.count()
        finally:
            await store.aclose()

    loaded, count = _run(scenario())
    assert seed.loads == 1
    assert sorted(loaded) == [0] * 7 + [len(resume_passages)]
    assert count == len(resume_passages)


def test_bootstrap_skips_populated_store(make_store, resume_passages):
    seed = StaticSeedProvider(resume_passages)

    async def scenario():
        store = make_store()
        try:
            await store.upsert([make_passage("existing", [1.0, 1.0, 0.0, 0.0])])
            loaded = await store.ensure_bootstrapped(seed)
            return loaded, await store.count()
        finally:
            await store.aclose()

    loaded, count = _run(scenario())
    assert loaded == 0
    assert seed.loads == 0
    assert count == 1


def test_in_memory_sessions_are_always_released(resume_passages):
    store = InMemoryVectorStore(DIM)

    async def scenario():
        await store.upsert(resume_passages)
        await store.query([1.0, 0.0, 0.0, 0.0], 2)
        with pytest.raises(DimensionMismatchError):
            await store.query([1.0], 2)

    _run(scenario())
    assert store.acquired == 3
    assert store.released == store.acquired


def test_duckdb_file_persists_between_pools(tmp_path, resume_passages):
    dsn = f"duckdb:///{tmp_path / 'chat.duckdb'}"

    async def write():
        store = _duckdb_store(dsn=dsn)
        try:
            await store.upsert(resume_passages)
        finally:
            await store.aclose()

    async def read():
        store = _duckdb_store(dsn=dsn)
        try:
            return await store.count()
        finally:
            await store.aclose()

    _run(write())
    assert _run(read()) == len(resume_passages)


def test_duckdb_stored_dimension_mismatch_fails_loudly(tmp_path, resume_passages):
    dsn = str(tmp_path / "chat.duckdb")

    async def write():
        store = _duckdb_store(dsn=dsn)
        try:
            await store.upsert(resume_passages)
        finally:
            await store.aclose()

    async def reopen_with_other_dimension():
        store = _duckdb_store(dimension=8, dsn=dsn)
        try:
            with pytest.raises(DimensionMismatchError) as excinfo:
                await store.count()
            return excinfo.value
        finally:
            await store.aclose()

    _run(write())
    error = _run(reopen_with_other_dimension())
    assert error.expected == 8
    assert error.actual == DIM


def test_duckdb_unsupported_scheme_is_a_configuration_error():
    from backend.app.core.config import ConfigurationError

    async def scenario():
        store = _duckdb_store(dsn="postgres://user@host/db")
        try:
            with pytest.raises(ConfigurationError):
                await store.count()
        finally:
            await store.aclose()

    _run(scenario())


def test_duckdb_unopenable_path_is_a_connection_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")

    async def scenario():
        store = _duckdb_store(dsn=str(blocker / "chat.duckdb"))
        try:
            with pytest.raises(StoreConnectionError) as excinfo:
                await store.count()
            return excinfo.value
        finally:
            await store.aclose()

    error = _run(scenario())
    assert str(error).startswith("Database connection failed")
    assert error.details
