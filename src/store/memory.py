"""
Process-local ShipmentStore.

Backs the test suite and the CLI's --memory mode. Subscribers are notified
inline, in insertion order, before insert_log returns.
"""

import itertools
import uuid
from datetime import datetime

from src.core.errors import StoreError
from src.core.models import AuditLogEntry, ShipmentFields, ShipmentRecord, ShipmentStatus

from .base import LogCallback, LogSubscription, Principal, ShipmentStore


class InMemoryLogSubscription(LogSubscription):
    """Subscription registered directly on an InMemoryShipmentStore."""

    def __init__(self, store: "InMemoryShipmentStore", shipment_request_id: str, callback: LogCallback):
        super().__init__(shipment_request_id, callback)
        self._store = store

    async def unsubscribe(self) -> None:
        self._active = False
        self._store._remove_subscription(self)


class InMemoryShipmentStore(ShipmentStore):
    """
    Dictionary-backed store.

    Args:
        principal: Signed-in user (None means unauthenticated)
    """

    def __init__(self, principal: Principal | None = None):
        self.principal = principal
        self._requests: dict[str, ShipmentRecord] = {}
        self._sequence: dict[str, int] = {}
        self._logs: list[AuditLogEntry] = []
        self._log_ids = itertools.count(1)
        self._record_seq = itertools.count(1)
        self._subscriptions: dict[str, list[InMemoryLogSubscription]] = {}

    def sign_in(self, user_id: str, email: str | None = None) -> Principal:
        self.principal = Principal(id=user_id, email=email)
        return self.principal

    def sign_out(self) -> None:
        self.principal = None

    async def get_principal(self) -> Principal | None:
        return self.principal

    async def insert_request(self, title: str, description: str | None, user_id: str) -> str:
        if not title:
            raise StoreError("title must not be empty")
        record_id = str(uuid.uuid4())
        self._requests[record_id] = ShipmentRecord(
            id=record_id,
            title=title,
            description=description or None,
            status=ShipmentStatus.PENDING,
            user_id=user_id,
            created_at=datetime.utcnow(),
        )
        self._sequence[record_id] = next(self._record_seq)
        return record_id

    async def fetch_request(self, shipment_request_id: str) -> ShipmentRecord | None:
        record = self._requests.get(shipment_request_id)
        return record.model_copy(deep=True) if record else None

    async def list_requests(self, user_id: str) -> list[ShipmentRecord]:
        records = [r for r in self._requests.values() if r.user_id == user_id]
        records.sort(key=lambda r: (r.created_at, self._sequence[r.id]), reverse=True)
        return [r.model_copy(deep=True) for r in records]

    async def update_request(
        self,
        shipment_request_id: str,
        status: ShipmentStatus | None = None,
        extracted_data: ShipmentFields | None = None,
    ) -> None:
        record = self._requests.get(shipment_request_id)
        if record is None:
            raise StoreError(f"shipment request {shipment_request_id} not found")
        updates = {}
        if status is not None:
            updates["status"] = ShipmentStatus(status)
        if extracted_data is not None:
            updates["extracted_data"] = extracted_data.model_copy()
        self._requests[shipment_request_id] = record.model_copy(update=updates)

    async def insert_log(self, entry: AuditLogEntry) -> AuditLogEntry:
        if entry.shipment_request_id not in self._requests:
            raise StoreError(f"shipment request {entry.shipment_request_id} not found")
        stored = entry.model_copy(update={
            "id": str(next(self._log_ids)),
            "created_at": datetime.utcnow(),
        })
        self._logs.append(stored)
        for subscription in list(self._subscriptions.get(stored.shipment_request_id, [])):
            await subscription.deliver(stored)
        return stored

    async def fetch_logs(self, shipment_request_id: str) -> list[AuditLogEntry]:
        # list order is insertion order, which is also created_at order
        return [e for e in self._logs if e.shipment_request_id == shipment_request_id]

    async def subscribe_logs(self, shipment_request_id: str, callback: LogCallback) -> LogSubscription:
        subscription = InMemoryLogSubscription(self, shipment_request_id, callback)
        self._subscriptions.setdefault(shipment_request_id, []).append(subscription)
        return subscription

    def _remove_subscription(self, subscription: InMemoryLogSubscription) -> None:
        subs = self._subscriptions.get(subscription.shipment_request_id, [])
        if subscription in subs:
            subs.remove(subscription)

    def subscription_count(self, shipment_request_id: str) -> int:
        return len(self._subscriptions.get(shipment_request_id, []))
