"""
Detached audit log writes.

The workflow never waits for an audit entry to be stored. Each write runs as
its own asyncio task; a failed write is logged, counted and recorded in
``failures`` but never reaches the caller.
"""

import asyncio
from typing import Any

from pydantic import BaseModel

from src.core.models import AuditLogEntry
from src.observability.logger import get_logger
from src.observability.metrics import audit_log_writes_total, increment_counter
from src.store import ShipmentStore

logger = get_logger(__name__)


class LogWriteFailure(BaseModel):
    """An audit entry that could not be stored, and why."""

    entry: AuditLogEntry
    error: str

    class Config:
        frozen = True


class LogDispatcher:
    """
    Fire-and-forget writer for audit log entries.

    Args:
        store: Store receiving the entries
    """

    def __init__(self, store: ShipmentStore):
        self.store = store
        self.failures: list[LogWriteFailure] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def emit(
        self,
        shipment_request_id: str,
        status: str,
        actor: str,
        payload: dict[str, Any] | None = None,
    ) -> asyncio.Task:
        """
        Schedule one audit entry write and return immediately.

        Must be called from a running event loop.
        """
        entry = AuditLogEntry(
            shipment_request_id=shipment_request_id,
            status=status,
            actor=actor,
            payload=payload,
        )
        task = asyncio.create_task(self._write(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, entry: AuditLogEntry) -> AuditLogEntry | None:
        try:
            stored = await self.store.insert_log(entry)
        except Exception as e:
            self.failures.append(LogWriteFailure(entry=entry, error=str(e)))
            increment_counter(audit_log_writes_total, status=entry.status, outcome="failure")
            logger.error(
                f"Error creating log entry '{entry.status}': {e}",
                extra={"shipment_request_id": entry.shipment_request_id, "actor": entry.actor},
            )
            return None

        increment_counter(audit_log_writes_total, status=entry.status, outcome="success")
        return stored

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
