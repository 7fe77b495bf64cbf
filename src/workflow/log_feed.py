"""
Live audit log view for one shipment request.

The feed subscribes before it reads the existing entries, so an entry
inserted in between is seen at least once; duplicates are dropped by id.
"""

import inspect
from typing import Awaitable, Callable

from src.core.models import AuditLogEntry
from src.observability.logger import get_logger
from src.store import LogSubscription, ShipmentStore

logger = get_logger(__name__)

EntryListener = Callable[[AuditLogEntry], Awaitable[None] | None]


class LogFeed:
    """
    Ordered, de-duplicated audit log of the request being viewed.

    Args:
        store: Data access facade
        on_entry: Optional listener called once per newly seen entry
    """

    def __init__(self, store: ShipmentStore, on_entry: EntryListener | None = None):
        self.store = store
        self.on_entry = on_entry
        self.shipment_request_id: str | None = None
        self._entries: list[AuditLogEntry] = []
        self._seen: set[str] = set()
        self._subscription: LogSubscription | None = None

    @property
    def entries(self) -> list[AuditLogEntry]:
        return list(self._entries)

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    async def open(self, shipment_request_id: str) -> list[AuditLogEntry]:
        """
        Start following a request's log, closing any previous one.

        Returns:
            Entries known so far, oldest first
        """
        await self.close()
        self.shipment_request_id = shipment_request_id
        self._entries = []
        self._seen = set()

        self._subscription = await self.store.subscribe_logs(shipment_request_id, self._on_insert)
        try:
            existing = await self.store.fetch_logs(shipment_request_id)
        except Exception:
            await self.close()
            raise

        # live entries may already be buffered; keep the list in creation order
        for entry in existing:
            self._add(entry)
        self._entries.sort(key=lambda e: (e.created_at, _sort_id(e.id)))

        logger.debug(
            f"Opened log feed with {len(self._entries)} entries",
            extra={"shipment_request_id": shipment_request_id},
        )
        return self.entries

    async def _on_insert(self, entry: AuditLogEntry) -> None:
        if entry.shipment_request_id != self.shipment_request_id:
            return
        if self._add(entry) and self.on_entry is not None:
            result = self.on_entry(entry)
            if inspect.isawaitable(result):
                await result

    def _add(self, entry: AuditLogEntry) -> bool:
        if entry.id is not None:
            if entry.id in self._seen:
                return False
            self._seen.add(entry.id)
        self._entries.append(entry)
        return True

    async def close(self) -> None:
        """Stop following; must be called when the request is no longer viewed."""
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


def _sort_id(entry_id: str | None) -> tuple[int, str]:
    if entry_id is not None and entry_id.isdigit():
        return (int(entry_id), "")
    return (0, entry_id or "")
