# tests/core/checkpoint/test_checkpoint_store.py
"""Tests for the checkpoint store backends."""

from pathlib import Path

import pytest

from rekindle.core.checkpoint import (
    CheckpointStore,
    InMemoryCheckpointStore,
    SQLCheckpointStore,
    create_store,
)
from rekindle.core.config import StoreSettings


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest) -> CheckpointStore:
    if request.param == "memory":
        return InMemoryCheckpointStore()
    sql_store = SQLCheckpointStore.in_memory()
    request.addfinalizer(sql_store.close)
    return sql_store


class TestStoreContract:
    """Behavior shared by every backend."""

    def test_satisfies_protocol(self, store: CheckpointStore) -> None:
        assert isinstance(store, CheckpointStore)

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store: CheckpointStore) -> None:
        assert await store.get("ns:missing") is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, store: CheckpointStore) -> None:
        await store.put("ns:op-1", '{"a": 1}')

        assert await store.get("ns:op-1") == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store: CheckpointStore) -> None:
        await store.put("ns:op-1", "first")
        await store.put("ns:op-1", "second")

        assert await store.get("ns:op-1") == "second"
        assert await store.keys("ns:") == ["ns:op-1"]

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, store: CheckpointStore) -> None:
        await store.put("ns:op-1", "value")

        assert await store.delete("ns:op-1") is True
        assert await store.delete("ns:op-1") is False
        assert await store.get("ns:op-1") is None

    @pytest.mark.asyncio
    async def test_keys_filters_by_prefix(self, store: CheckpointStore) -> None:
        for key in ("a:1", "a:2", "b:1", "ab:1"):
            await store.put(key, "v")

        assert await store.keys("a:") == ["a:1", "a:2"]
        assert await store.keys() == ["a:1", "a:2", "ab:1", "b:1"]

    @pytest.mark.asyncio
    async def test_prefix_with_like_wildcards_is_literal(self, store: CheckpointStore) -> None:
        await store.put("a_b:1", "v")
        await store.put("axb:1", "v")

        assert await store.keys("a_b:") == ["a_b:1"]


class TestSQLCheckpointStore:
    """SQL-specific behavior."""

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_file_database_survives_reopen(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path / 'checkpoints.db'}"
        with SQLCheckpointStore(url) as first:
            await first.put("ns:op-1", "durable")

        with SQLCheckpointStore(url) as second:
            assert await second.get("ns:op-1") == "durable"

    @pytest.mark.asyncio
    async def test_closed_store_raises(self) -> None:
        store = SQLCheckpointStore.in_memory()
        store.close()
        store.close()

        with pytest.raises(RuntimeError, match="closed"):
            await store.get("ns:op-1")


class TestCreateStore:
    """create_store() backend selection."""

    def test_memory_backend(self) -> None:
        assert isinstance(create_store(StoreSettings()), InMemoryCheckpointStore)

    def test_sql_backend(self, tmp_path: Path) -> None:
        store = create_store(StoreSettings(backend="sql", url=f"sqlite:///{tmp_path / 'c.db'}"))

        assert isinstance(store, SQLCheckpointStore)
        store.close()

    def test_sql_backend_requires_url(self) -> None:
        with pytest.raises(ValueError, match="url is required"):
            StoreSettings(backend="sql")
