"""
Integration tests for the SQLite log store.

Tests cover:
- Connection lifecycle
- Server-assigned, strictly increasing seq
- Atomic batch inserts
- Cursor-based catch-up reads
- Independent writers on one file
"""

import os
import sqlite3
import tempfile

import pytest

from logmirror.errors import StoreConnectionError, StoreError
from logmirror.store import LogStore, RawRow, SqliteLogStore


class TestSqliteLogStore:
    """Tests for SqliteLogStore."""

    @pytest.fixture
    def db_path(self):
        """Create temporary database path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield os.path.join(tmpdir, "log.db")

    @pytest.fixture
    def store(self, db_path):
        return SqliteLogStore(db_path, "test_log", wal_mode=False)

    async def _ready(self, store):
        await store.connect()
        await store.create_table()
        return store

    def test_satisfies_protocol(self, store):
        assert isinstance(store, LogStore)

    def test_rejects_invalid_table_name(self, db_path):
        with pytest.raises(ValueError):
            SqliteLogStore(db_path, "test_log; DROP TABLE x")
        with pytest.raises(ValueError):
            SqliteLogStore(db_path, "1log")

    @pytest.mark.asyncio
    async def test_requires_connection(self, store):
        assert not store.is_connected

        with pytest.raises(StoreConnectionError):
            await store.load_all()
        with pytest.raises(StoreConnectionError):
            await store.insert_one({"value": 1})

    @pytest.mark.asyncio
    async def test_connect_and_close(self, store):
        await store.connect()
        assert store.is_connected

        await store.close()
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_create_table_is_idempotent(self, store):
        await self._ready(store)
        await store.create_table()

        assert await store.load_all() == []

    @pytest.mark.asyncio
    async def test_missing_table_is_store_error(self, store):
        await store.connect()

        with pytest.raises(StoreError):
            await store.load_all()

    @pytest.mark.asyncio
    async def test_insert_one_assigns_seq(self, store):
        await self._ready(store)

        first = await store.insert_one({"value": 42})
        second = await store.insert_one({"value": 43})

        assert first == RawRow(seq=1, data={"value": 42})
        assert second.seq == 2

    @pytest.mark.asyncio
    async def test_insert_many_orders_seq_by_input(self, store):
        await self._ready(store)

        rows = await store.insert_many([{"value": 1}, {"value": 2}, {"value": 3}])

        assert [r.seq for r in rows] == [1, 2, 3]
        assert [r.data["value"] for r in rows] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_insert_many_empty(self, store):
        await self._ready(store)

        assert await store.insert_many([]) == []
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_insert_many_is_atomic(self, store, db_path):
        await self._ready(store)
        conn = sqlite3.connect(db_path)
        conn.execute(
            """
            CREATE TRIGGER reject_unlucky BEFORE INSERT ON test_log
            WHEN instr(NEW.data, 'unlucky') > 0
            BEGIN
                SELECT RAISE(ABORT, 'unlucky payload');
            END
            """
        )
        conn.commit()
        conn.close()

        with pytest.raises(StoreError):
            await store.insert_many([{"value": 1}, {"value": 2}, {"tag": "unlucky"}])

        assert await store.count() == 0

        rows = await store.insert_many([{"value": 1}])
        assert rows[0].seq >= 1

    @pytest.mark.asyncio
    async def test_load_all_returns_encoded_rows_ascending(self, store):
        await self._ready(store)
        await store.insert_many([{"value": 1}, {"value": 2}])

        rows = await store.load_all()

        assert [r.seq for r in rows] == [1, 2]
        assert all(r.encoded for r in rows)
        assert rows[0].data == '{"value": 1}'

    @pytest.mark.asyncio
    async def test_fetch_since_is_exclusive(self, store):
        await self._ready(store)
        await store.insert_many([{"value": v} for v in range(5)])

        assert [r.seq for r in await store.fetch_since(0)] == [1, 2, 3, 4, 5]
        assert [r.seq for r in await store.fetch_since(3)] == [4, 5]
        assert await store.fetch_since(5) == []

    @pytest.mark.asyncio
    async def test_seq_not_reused_after_out_of_band_delete(self, store, db_path):
        await self._ready(store)
        await store.insert_many([{"value": 1}, {"value": 2}])
        conn = sqlite3.connect(db_path)
        conn.execute("DELETE FROM test_log WHERE seq = 2")
        conn.commit()
        conn.close()

        row = await store.insert_one({"value": 3})

        assert row.seq == 3

    @pytest.mark.asyncio
    async def test_independent_writers_share_one_sequence(self, store, db_path):
        await self._ready(store)
        other = SqliteLogStore(db_path, "test_log", wal_mode=False)
        await other.connect()

        seqs = []
        for i in range(3):
            seqs.append((await store.insert_one({"writer": "a", "i": i})).seq)
            seqs.append((await other.insert_one({"writer": "b", "i": i})).seq)

        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 6
        assert [r.seq for r in await store.load_all()] == seqs

    @pytest.mark.asyncio
    async def test_insert_raw_bypasses_serialization(self, store):
        await self._ready(store)

        seq = await store.insert_raw('{"value": "bad"}')

        rows = await store.load_all()
        assert rows == [RawRow(seq=seq, data='{"value": "bad"}', encoded=True)]
