"""
Data access facade for shipment requests and their audit logs.

The store, the identity provider and the change feed are external services;
this interface is everything the workflow needs from them. Implementations
must treat every call as a network round trip: the workflow never assumes
two calls are atomic.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from src.core.models import AuditLogEntry, ShipmentFields, ShipmentRecord, ShipmentStatus
from src.observability.logger import get_logger

logger = get_logger(__name__)

LogCallback = Callable[[AuditLogEntry], Awaitable[Any] | Any]


class Principal(BaseModel):
    """The authenticated user on whose behalf writes are made."""

    id: str
    email: str | None = None


class LogSubscription(ABC):
    """
    Live feed of audit log inserts for one shipment request.

    Entries are delivered in insertion order until unsubscribe() is awaited.
    """

    def __init__(self, shipment_request_id: str, callback: LogCallback):
        self.shipment_request_id = shipment_request_id
        self.callback = callback
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    async def deliver(self, entry: AuditLogEntry) -> None:
        """Hand one entry to the callback; callback errors are logged, not raised."""
        if not self._active:
            return
        try:
            result = self.callback(entry)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Log subscriber callback failed: {e}",
                extra={"shipment_request_id": self.shipment_request_id},
            )

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivery and release the underlying stream."""
        pass


class ShipmentStore(ABC):
    """
    Abstract data access capability.

    Record and log reads return fresh copies; mutating the returned models
    never changes stored state.
    """

    # --- Authentication ---

    @abstractmethod
    async def get_principal(self) -> Principal | None:
        """Return the current principal, or None when nobody is signed in."""
        pass

    # --- Records ---

    @abstractmethod
    async def insert_request(self, title: str, description: str | None, user_id: str) -> str:
        """
        Insert a shipment request with status "pending".

        Returns:
            The generated id

        Raises:
            StoreError: If the insert fails
        """
        pass

    @abstractmethod
    async def fetch_request(self, shipment_request_id: str) -> ShipmentRecord | None:
        """
        Fetch one shipment request.

        Raises:
            StoreError: If the read fails
        """
        pass

    @abstractmethod
    async def list_requests(self, user_id: str) -> list[ShipmentRecord]:
        """
        List a user's shipment requests, newest first.

        Raises:
            StoreError: If the read fails
        """
        pass

    @abstractmethod
    async def update_request(
        self,
        shipment_request_id: str,
        status: ShipmentStatus | None = None,
        extracted_data: ShipmentFields | None = None,
    ) -> None:
        """
        Update status and/or extracted data; omitted values are left unchanged.

        Raises:
            StoreError: If the record does not exist or the update fails
        """
        pass

    async def latest_request_id(self, user_id: str) -> str | None:
        """Id of the user's most recently created request, if any."""
        records = await self.list_requests(user_id)
        return records[0].id if records else None

    # --- Audit logs ---

    @abstractmethod
    async def insert_log(self, entry: AuditLogEntry) -> AuditLogEntry:
        """
        Append an audit log entry.

        Returns:
            The stored entry with id and created_at assigned

        Raises:
            StoreError: If the insert fails
        """
        pass

    @abstractmethod
    async def fetch_logs(self, shipment_request_id: str) -> list[AuditLogEntry]:
        """
        Fetch a request's audit log, oldest first.

        Raises:
            StoreError: If the read fails
        """
        pass

    # --- Change notification ---

    @abstractmethod
    async def subscribe_logs(self, shipment_request_id: str, callback: LogCallback) -> LogSubscription:
        """
        Subscribe to audit log inserts for one request.

        Only entries inserted after this call returns are guaranteed to be
        delivered.
        """
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None
