"""
PostgreSQL-backed ShipmentStore.

Uses the async psycopg3 pool for records and logs, and a dedicated
LISTEN connection per log subscription (see realtime.py).
"""

from typing import Any

import psycopg
from psycopg.types.json import Jsonb
from pydantic import ValidationError

from src.core.errors import StoreError
from src.core.models import AuditLogEntry, ShipmentFields, ShipmentRecord, ShipmentStatus
from src.observability.logger import get_logger

from .base import LogCallback, LogSubscription, Principal, ShipmentStore
from .connection import AsyncDatabaseConnectionPool
from .realtime import PostgresLogSubscription

logger = get_logger(__name__)

_RECORD_COLUMNS = "id, title, description, status, extracted_data, user_id, created_at"
_LOG_COLUMNS = "id, shipment_request_id, status, actor, payload, created_at"


def _row_to_record(row: dict[str, Any]) -> ShipmentRecord:
    extracted = row.get("extracted_data")
    status = row.get("status")
    try:
        status = ShipmentStatus(status)
    except ValueError:
        logger.warning(f"Unknown status {status!r} on shipment request {row['id']}, treating as pending")
        status = ShipmentStatus.PENDING
    try:
        extracted_data = ShipmentFields.model_validate(extracted) if extracted else None
    except ValidationError as e:
        logger.error(f"Unreadable extracted_data on shipment request {row['id']}: {e}")
        raise StoreError(f"shipment request {row['id']} has malformed extracted_data") from e
    return ShipmentRecord(
        id=str(row["id"]),
        title=row["title"],
        description=row.get("description"),
        status=status,
        extracted_data=extracted_data,
        user_id=str(row["user_id"]),
        created_at=row["created_at"],
    )


def row_to_log_entry(row: dict[str, Any]) -> AuditLogEntry:
    return AuditLogEntry(
        id=str(row["id"]),
        shipment_request_id=str(row["shipment_request_id"]),
        status=row["status"],
        actor=row["actor"],
        payload=row.get("payload"),
        created_at=row["created_at"],
    )


async def fetch_log_entry(pool: AsyncDatabaseConnectionPool, log_id: str) -> AuditLogEntry | None:
    """Read a single log row by id."""
    rows = await pool.execute_query(
        f"SELECT {_LOG_COLUMNS} FROM shipment_request_logs WHERE id = %(id)s",
        {"id": int(log_id)},
    )
    return row_to_log_entry(rows[0]) if rows else None


class PostgresShipmentStore(ShipmentStore):
    """
    ShipmentStore over the shipment_requests / shipment_request_logs tables.

    Args:
        pool: Open connection pool
        principal: Authenticated user (None means unauthenticated)
    """

    def __init__(self, pool: AsyncDatabaseConnectionPool, principal: Principal | None = None):
        self.pool = pool
        self.principal = principal
        self._subscriptions: list[PostgresLogSubscription] = []

    async def get_principal(self) -> Principal | None:
        return self.principal

    async def insert_request(self, title: str, description: str | None, user_id: str) -> str:
        insert_sql = """
            INSERT INTO shipment_requests (title, description, status, user_id)
            VALUES (%(title)s, %(description)s, %(status)s, %(user_id)s)
            RETURNING id;
        """
        try:
            async with self.pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        insert_sql,
                        {
                            "title": title,
                            "description": description or None,
                            "status": ShipmentStatus.PENDING.value,
                            "user_id": user_id,
                        },
                    )
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as e:
            logger.error(f"Failed to insert shipment request: {e}")
            raise StoreError(str(e)) from e

        record_id = str(row["id"])
        logger.debug(f"Inserted shipment request {record_id}")
        return record_id

    async def fetch_request(self, shipment_request_id: str) -> ShipmentRecord | None:
        try:
            rows = await self.pool.execute_query(
                f"SELECT {_RECORD_COLUMNS} FROM shipment_requests WHERE id = %(id)s",
                {"id": shipment_request_id},
            )
        except psycopg.Error as e:
            logger.error(f"Failed to fetch shipment request {shipment_request_id}: {e}")
            raise StoreError(str(e)) from e
        return _row_to_record(rows[0]) if rows else None

    async def list_requests(self, user_id: str) -> list[ShipmentRecord]:
        try:
            rows = await self.pool.execute_query(
                f"""
                SELECT {_RECORD_COLUMNS} FROM shipment_requests
                WHERE user_id = %(user_id)s
                ORDER BY created_at DESC
                """,
                {"user_id": user_id},
            )
        except psycopg.Error as e:
            logger.error(f"Failed to list shipment requests for {user_id}: {e}")
            raise StoreError(str(e)) from e
        return [_row_to_record(row) for row in rows]

    async def update_request(
        self,
        shipment_request_id: str,
        status: ShipmentStatus | None = None,
        extracted_data: ShipmentFields | None = None,
    ) -> None:
        assignments = []
        params: dict[str, Any] = {"id": shipment_request_id}
        if status is not None:
            assignments.append("status = %(status)s")
            params["status"] = ShipmentStatus(status).value
        if extracted_data is not None:
            assignments.append("extracted_data = %(extracted_data)s")
            params["extracted_data"] = Jsonb(extracted_data.to_blob())
        if not assignments:
            return

        try:
            affected = await self.pool.execute_command(
                f"UPDATE shipment_requests SET {', '.join(assignments)} WHERE id = %(id)s",
                params,
            )
        except psycopg.Error as e:
            logger.error(f"Failed to update shipment request {shipment_request_id}: {e}")
            raise StoreError(str(e)) from e

        if affected == 0:
            raise StoreError(f"shipment request {shipment_request_id} not found")

    async def insert_log(self, entry: AuditLogEntry) -> AuditLogEntry:
        insert_sql = f"""
            INSERT INTO shipment_request_logs (shipment_request_id, status, actor, payload)
            VALUES (%(shipment_request_id)s, %(status)s, %(actor)s, %(payload)s)
            RETURNING {_LOG_COLUMNS};
        """
        try:
            async with self.pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        insert_sql,
                        {
                            "shipment_request_id": entry.shipment_request_id,
                            "status": entry.status,
                            "actor": entry.actor,
                            "payload": Jsonb(entry.payload) if entry.payload is not None else None,
                        },
                    )
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as e:
            logger.error(
                f"Failed to insert log '{entry.status}' for {entry.shipment_request_id}: {e}"
            )
            raise StoreError(str(e)) from e

        return row_to_log_entry(row)

    async def fetch_logs(self, shipment_request_id: str) -> list[AuditLogEntry]:
        try:
            rows = await self.pool.execute_query(
                f"""
                SELECT {_LOG_COLUMNS} FROM shipment_request_logs
                WHERE shipment_request_id = %(id)s
                ORDER BY created_at ASC, id ASC
                """,
                {"id": shipment_request_id},
            )
        except psycopg.Error as e:
            logger.error(f"Failed to fetch logs for {shipment_request_id}: {e}")
            raise StoreError(str(e)) from e
        return [row_to_log_entry(row) for row in rows]

    async def subscribe_logs(self, shipment_request_id: str, callback: LogCallback) -> LogSubscription:
        subscription = PostgresLogSubscription(
            pool=self.pool,
            shipment_request_id=shipment_request_id,
            callback=callback,
            fetch_entry=fetch_log_entry,
            on_unsubscribe=self._remove_subscription,
        )
        try:
            await subscription.start()
        except psycopg.Error as e:
            logger.error(f"Failed to subscribe to logs for {shipment_request_id}: {e}")
            raise StoreError(str(e)) from e
        self._subscriptions.append(subscription)
        return subscription

    def _remove_subscription(self, subscription: PostgresLogSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def subscription_count(self, shipment_request_id: str) -> int:
        return sum(1 for s in self._subscriptions if s.shipment_request_id == shipment_request_id)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()
        self._subscriptions.clear()
