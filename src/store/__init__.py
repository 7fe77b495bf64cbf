"""
Data access layer: the ShipmentStore facade and its implementations.
"""

from .base import LogCallback, LogSubscription, Principal, ShipmentStore
from .connection import AsyncDatabaseConnectionPool
from .memory import InMemoryShipmentStore
from .postgres import PostgresShipmentStore
from .schema import apply_schema

__all__ = [
    "AsyncDatabaseConnectionPool",
    "InMemoryShipmentStore",
    "LogCallback",
    "LogSubscription",
    "PostgresShipmentStore",
    "Principal",
    "ShipmentStore",
    "apply_schema",
]
