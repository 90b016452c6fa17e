"""
Integration tests for the Postgres backends.

These tests require a reachable PostgreSQL server. Set
LOGMIRROR_TEST_POSTGRES_DSN (for example ``postgresql:///logmirror_test``)
to enable them.
"""

import asyncio
import os
import time
import uuid

import pytest
from pydantic import BaseModel

from logmirror.errors import ValidationError
from logmirror.reactive import Graph
from logmirror.sync import MirroredLog

POSTGRES_DSN = os.environ.get("LOGMIRROR_TEST_POSTGRES_DSN")

pytestmark = pytest.mark.skipif(
    not POSTGRES_DSN,
    reason="Postgres tests disabled. Set LOGMIRROR_TEST_POSTGRES_DSN to enable.",
)


class Reading(BaseModel):
    value: int


async def wait_until(predicate, timeout=5.0):
    start = time.time()
    while time.time() - start < timeout:
        if predicate():
            return True
        await asyncio.sleep(0.05)
    return False


class TestPostgresBackends:
    """Tests for PostgresLogStore and PostgresChannel."""

    @pytest.fixture
    def table(self):
        """Unique table name for test isolation."""
        return f"test_log_{uuid.uuid4().hex[:8]}"

    async def _store(self, table):
        from logmirror.store.postgres import PostgresLogStore

        store = PostgresLogStore(POSTGRES_DSN, table)
        await store.connect()
        await store.create_table()
        return store

    async def _drop(self, store):
        from psycopg import sql

        await store._conn.execute(sql.SQL("DROP TABLE IF EXISTS {}").format(sql.Identifier(store.table)))
        await store.close()

    @pytest.mark.asyncio
    async def test_insert_and_fetch(self, table):
        store = await self._store(table)
        try:
            rows = await store.insert_many([{"value": 1}, {"value": 2}, {"value": 3}])

            assert [r.seq for r in rows] == sorted(r.seq for r in rows)
            assert [r.data for r in await store.fetch_since(rows[0].seq)] == [{"value": 2}, {"value": 3}]
            assert not (await store.load_all())[0].encoded
        finally:
            await self._drop(store)

    @pytest.mark.asyncio
    async def test_concurrent_writers_commit_in_seq_order(self, table):
        import psycopg
        from psycopg import sql
        from psycopg.types.json import Jsonb

        reader_store = await self._store(table)
        writer_b = await self._store(table)
        writer_a = None
        try:
            log = await MirroredLog.create(reader_store, Reading, Graph())

            # Writer A: same statements as insert_many, transaction held open
            writer_a = await psycopg.AsyncConnection.connect(POSTGRES_DSN)
            await writer_a.execute(
                sql.SQL("LOCK TABLE {} IN SHARE ROW EXCLUSIVE MODE").format(sql.Identifier(table))
            )
            cur = await writer_a.execute(
                sql.SQL("INSERT INTO {} (data) VALUES (%s) RETURNING seq").format(sql.Identifier(table)),
                (Jsonb({"value": 1}),),
            )
            (seq_a,) = await cur.fetchone()

            insert_b = asyncio.create_task(writer_b.insert_one({"value": 2}))
            await asyncio.sleep(0.3)

            assert not insert_b.done()
            assert await log.poll() == []

            await writer_a.commit()
            row_b = await insert_b

            assert row_b.seq > seq_a
            await log.poll()
            assert [r.seq for r in log.snapshot] == [seq_a, row_b.seq]
            assert [r.data.value for r in log.snapshot] == [1, 2]
        finally:
            if writer_a is not None:
                await writer_a.close()
            await writer_b.close()
            await self._drop(reader_store)

    @pytest.mark.asyncio
    async def test_mirror_rejects_invalid_data_on_poll(self, table):
        store = await self._store(table)
        try:
            log = await MirroredLog.create(store, Reading, Graph())
            await store.insert_one({"value": "bad"})

            with pytest.raises(ValidationError):
                await log.poll()
            assert log.frontier == 0
        finally:
            await self._drop(store)

    @pytest.mark.asyncio
    async def test_listen_notify_converges_mirror(self, table):
        from logmirror.notify import ChangeNotifier
        from logmirror.notify.postgres import PostgresChannel

        store = await self._store(table)
        channel = PostgresChannel(POSTGRES_DSN)
        await channel.connect()
        graph = Graph()
        notifier = ChangeNotifier(channel, graph, name=f"ch_{table}")
        try:
            reader = await MirroredLog.create(store, Reading, graph, sync_on_append=False)
            notifier.register(reader)
            await notifier.start()

            await reader.append_many([{"value": 4}, {"value": 5}])
            await notifier.notify()

            assert await wait_until(lambda: graph.steps >= 1)
            assert [r.data.value for r in reader.snapshot] == [4, 5]
        finally:
            await notifier.stop()
            await channel.close()
            await self._drop(store)
