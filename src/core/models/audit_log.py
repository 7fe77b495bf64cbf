"""
AuditLogEntry model representing one immutable event in a shipment request's history.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# Known status labels; the column itself is free-form.
LOG_UPLOADED = "uploaded"
LOG_PROCESSING_STARTED = "processing started"
LOG_PROCESSING_DONE = "processing done"
LOG_PROCESSING_FAILED = "processing failed"
LOG_UPDATED_FIELDS = "updated fields"
LOG_COMPLETED = "completed"

# Synthetic actor for the automated extraction steps
AI_ACTOR = "AI"


class AuditLogEntry(BaseModel):
    """
    Append-only event tied to one shipment request.

    Attributes:
        id: Identifier generated by the store (None before insert)
        shipment_request_id: Which shipment request the event belongs to
        status: Event label (e.g. "uploaded", "processing done")
        actor: User id, or "AI" for the extraction process
        payload: Optional structured details (extracted snapshot, field diff)
        created_at: When the event occurred
    """

    id: str | None = None
    shipment_request_id: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    actor: str
    payload: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "42",
                "shipment_request_id": "5f0c3c9e-8d0b-4c55-9a57-4a3f0f7a2b11",
                "status": "updated fields",
                "actor": "c1d2e3f4",
                "payload": {
                    "extracted_data": {
                        "field": "containerNumber",
                        "old_value": "MSCU123456",
                        "new_value": "MSCU1234567",
                    }
                },
            }
        }
