"""
PostgreSQL LISTEN/NOTIFY notification channel.

Each subscription owns a dedicated autocommit connection that issues
LISTEN and forwards notifications to its handler from a reader task.
Publishing goes through one shared connection with pg_notify().

Invariants:
    - Notifications sent while no LISTEN is active are lost (Postgres
      semantics); callers rely on explicit polling to self-heal
    - unsubscribe() cancels the reader and closes its connection
    - If the LISTEN connection ends on its own, the subscription turns
      inactive and its handler is called once more so the listener notices

How to change safely:
    - Compose channel identifiers with psycopg.sql, never string formatting
    - Test against a real server (tests/integration/test_postgres.py)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..errors import ChannelError
from .base import NotificationHandler

logger = logging.getLogger(__name__)

# Try to import psycopg, provide helpful message if not installed
try:
    import psycopg
    from psycopg import sql

    PSYCOPG_AVAILABLE = True
except ImportError:
    PSYCOPG_AVAILABLE = False
    psycopg = None


class PostgresSubscription:
    """A LISTEN on a dedicated connection."""

    def __init__(self, name: str, conn: "psycopg.AsyncConnection", handler: NotificationHandler) -> None:
        self.name = name
        self._conn = conn
        self._handler = handler
        self._task: Optional[asyncio.Task] = None
        self._lost = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._lost

    def _start(self) -> None:
        self._task = asyncio.create_task(self._read(), name=f"logmirror-listen-{self.name}")

    async def _read(self) -> None:
        try:
            async for notify in self._conn.notifies():
                if notify.channel == self.name:
                    self._handler(notify.payload)
        except psycopg.Error as e:
            logger.error(f"LISTEN connection for {self.name} failed: {e}", exc_info=True)
        self._lost = True
        # Wake the listener so it notices the subscription is gone
        self._handler("")

    async def unsubscribe(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        try:
            await self._conn.close()
        except psycopg.Error as e:
            logger.warning(f"Error closing LISTEN connection: {e}")
        logger.debug("Unlistened", extra={"channel": self.name})


class PostgresChannel:
    """Postgres implementation of the Channel protocol.

    Example:
        >>> channel = PostgresChannel("postgresql:///app")
        >>> await channel.connect()
        >>> await channel.publish("logmirror")
    """

    def __init__(self, dsn: str) -> None:
        if not PSYCOPG_AVAILABLE:
            raise ImportError(
                "psycopg is required for the Postgres backend. "
                "Install with: pip install 'logmirror[postgres]'"
            )
        self.dsn = dsn
        self._conn: Optional[psycopg.AsyncConnection] = None
        self._subscriptions: list[PostgresSubscription] = []

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    async def connect(self) -> None:
        if self.is_connected:
            return
        try:
            self._conn = await psycopg.AsyncConnection.connect(self.dsn, autocommit=True)
        except psycopg.Error as e:
            raise ChannelError(f"Failed to connect to Postgres: {e}") from e
        logger.info("Postgres channel connected")

    async def close(self) -> None:
        for sub in self._subscriptions:
            await sub.unsubscribe()
        self._subscriptions.clear()
        if self._conn is not None:
            try:
                await self._conn.close()
            except psycopg.Error as e:
                logger.warning(f"Error closing Postgres channel: {e}")
            self._conn = None

    async def publish(self, name: str, payload: str = "") -> None:
        if not self.is_connected:
            raise ChannelError("Not connected", channel=name)
        try:
            await self._conn.execute("SELECT pg_notify(%s, %s)", (name, payload))
        except psycopg.Error as e:
            raise ChannelError(f"NOTIFY {name} failed: {e}", channel=name) from e

    async def subscribe(self, name: str, handler: NotificationHandler) -> PostgresSubscription:
        try:
            conn = await psycopg.AsyncConnection.connect(self.dsn, autocommit=True)
        except psycopg.Error as e:
            raise ChannelError(f"Failed to connect to Postgres: {e}", channel=name) from e
        try:
            await conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(name)))
        except psycopg.Error as e:
            await conn.close()
            raise ChannelError(f"LISTEN {name} failed: {e}", channel=name) from e

        sub = PostgresSubscription(name, conn, handler)
        sub._start()
        self._subscriptions.append(sub)
        logger.debug("Listening", extra={"channel": name})
        return sub
