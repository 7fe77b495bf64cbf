"""
LISTEN/NOTIFY change feed for audit log inserts.

Each subscription owns one autocommit connection listening on the log
channel. Notifications carry only ids; the full row is read through the pool
before it is handed to the subscriber.
"""

import asyncio
import json
from typing import Awaitable, Callable

import psycopg

from src.core.models import AuditLogEntry
from src.observability.logger import get_logger

from .base import LogCallback, LogSubscription
from .connection import AsyncDatabaseConnectionPool
from .schema import NOTIFY_CHANNEL

logger = get_logger(__name__)

FetchEntry = Callable[[AsyncDatabaseConnectionPool, str], Awaitable[AuditLogEntry | None]]


class PostgresLogSubscription(LogSubscription):
    """
    Subscription backed by a dedicated LISTEN connection.

    Args:
        pool: Pool used to read notified rows
        shipment_request_id: Request whose log inserts are delivered
        callback: Receives each AuditLogEntry
        fetch_entry: Reads one log row by id
        on_unsubscribe: Called once the subscription has stopped
    """

    def __init__(
        self,
        pool: AsyncDatabaseConnectionPool,
        shipment_request_id: str,
        callback: LogCallback,
        fetch_entry: FetchEntry,
        on_unsubscribe: Callable[["PostgresLogSubscription"], None] | None = None,
    ):
        super().__init__(shipment_request_id, callback)
        self.pool = pool
        self.fetch_entry = fetch_entry
        self.on_unsubscribe = on_unsubscribe
        self._conn: psycopg.AsyncConnection | None = None
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Open the listening connection; returns once LISTEN is active."""
        self._conn = await psycopg.AsyncConnection.connect(self.pool.conninfo, autocommit=True)
        await self._conn.execute(f"LISTEN {NOTIFY_CHANNEL}")
        self._task = asyncio.create_task(self._listen())
        logger.debug(f"Listening for log inserts on {self.shipment_request_id}")

    async def _listen(self) -> None:
        try:
            async for notify in self._conn.notifies():
                await self._handle(notify.payload)
        except asyncio.CancelledError:
            raise
        except psycopg.Error as e:
            if self._active:
                logger.error(
                    f"Log feed connection lost: {e}",
                    extra={"shipment_request_id": self.shipment_request_id},
                )

    async def _handle(self, payload: str) -> None:
        try:
            message = json.loads(payload)
        except ValueError:
            logger.warning(f"Ignoring malformed log notification: {payload!r}")
            return

        if str(message.get("shipment_request_id")) != self.shipment_request_id:
            return

        try:
            entry = await self.fetch_entry(self.pool, str(message["id"]))
        except psycopg.Error as e:
            logger.error(f"Failed to read notified log {message.get('id')}: {e}")
            return

        if entry is not None:
            await self.deliver(entry)

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
        if self.on_unsubscribe is not None:
            self.on_unsubscribe(self)
        logger.debug(f"Stopped listening for log inserts on {self.shipment_request_id}")
