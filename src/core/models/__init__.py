"""
Core data models for the shipment document intake workflow.

All models use Pydantic for runtime validation and type safety.
"""

from .audit_log import AuditLogEntry
from .batch import ACCEPTED_MIME_TYPES, Batch, HistoryItem, IntakeFile, ProcessedDocument
from .extraction_result import ExtractionResult
from .shipment import ShipmentFields, ShipmentRecord, ShipmentStatus, can_transition
from .validation_result import FieldValidationResult

__all__ = [
    "ACCEPTED_MIME_TYPES",
    "AuditLogEntry",
    "Batch",
    "ExtractionResult",
    "FieldValidationResult",
    "HistoryItem",
    "IntakeFile",
    "ProcessedDocument",
    "ShipmentFields",
    "ShipmentRecord",
    "ShipmentStatus",
    "can_transition",
]
