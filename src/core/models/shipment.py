"""
Shipment request models: lifecycle status, extracted fields and the persisted record.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ShipmentStatus(str, Enum):
    """Lifecycle status of a shipment request (values match the stored column)."""

    PENDING = "pending"
    NEEDS_REVIEW = "needs review"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[ShipmentStatus, set[ShipmentStatus]] = {
    ShipmentStatus.PENDING: {ShipmentStatus.NEEDS_REVIEW, ShipmentStatus.FAILED},
    ShipmentStatus.NEEDS_REVIEW: {ShipmentStatus.COMPLETED, ShipmentStatus.FAILED},
    ShipmentStatus.COMPLETED: set(),
    ShipmentStatus.FAILED: set(),
}


def can_transition(current: str | ShipmentStatus | None, target: str | ShipmentStatus) -> bool:
    """
    Check whether a status change follows the modeled flow.

    Unknown current values (e.g. legacy rows) may move anywhere except out of
    a terminal status. Same-status updates are always allowed.

    Args:
        current: Current status (None for a record without status)
        target: Requested status

    Returns:
        True if the transition is allowed
    """
    target = ShipmentStatus(target)
    if current is None:
        return True
    try:
        current = ShipmentStatus(current)
    except ValueError:
        return True
    if current == target:
        return True
    return target in _TRANSITIONS[current]


class ShipmentFields(BaseModel):
    """
    The eight extracted (and user-editable) shipment fields.

    All values are strings; validation happens in the rule engine so that a
    partially wrong extraction can still be shown and corrected.

    Stored in ``shipment_requests.extracted_data`` under the camelCase aliases.
    """

    bill_of_lading_number: str = Field(default="", alias="billOfLadingNumber")
    container_number: str = Field(default="", alias="containerNumber")
    consignee_name: str = Field(default="", alias="consigneeName")
    consignee_address: str = Field(default="", alias="consigneeAddress")
    date_of_export: str = Field(default="", alias="dateOfExport")
    line_items_count: str = Field(default="", alias="lineItemsCount")
    average_gross_weight: str = Field(default="", alias="averageGrossWeight")
    average_price: str = Field(default="", alias="averagePrice")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "billOfLadingNumber": "ZMLU34110002",
                "containerNumber": "MSCU1234567",
                "consigneeName": "Acme Imports Ltd.",
                "consigneeAddress": "12 Harbour Road, Rotterdam",
                "dateOfExport": "2025-03-14",
                "lineItemsCount": "18",
                "averageGrossWeight": "162.37",
                "averagePrice": "1250.50",
            }
        }

    @field_validator("*", mode="before")
    @classmethod
    def coerce_to_text(cls, v):
        """Stored blobs may hold numbers (e.g. lineItemsCount: 18) or nulls"""
        if v is None:
            return ""
        if isinstance(v, int | float) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def empty(cls) -> "ShipmentFields":
        """Placeholder used when a record has no extraction yet."""
        return cls()

    @classmethod
    def field_names(cls) -> list[str]:
        return list(cls.model_fields.keys())

    @classmethod
    def resolve_name(cls, name: str) -> str:
        """
        Map a field name or its camelCase alias to the attribute name.

        Raises:
            KeyError: If the name is not one of the eight fields
        """
        for attr, info in cls.model_fields.items():
            if name in (attr, info.alias):
                return attr
        raise KeyError(f"Unknown shipment field: {name}")

    def merged(self, partial: dict[str, str]) -> "ShipmentFields":
        """Return a copy with the given fields (names or aliases) replaced."""
        updates = {self.resolve_name(k): v for k, v in partial.items()}
        return self.model_copy(update=updates)

    def to_blob(self) -> dict[str, str]:
        """Serialize for the ``extracted_data`` column."""
        return self.model_dump(by_alias=True)


class ShipmentRecord(BaseModel):
    """
    One persisted shipment request.

    Attributes:
        id: Identifier generated by the store
        title: Required free-text title
        description: Optional description
        status: Lifecycle status
        extracted_data: Extracted fields, None until extraction succeeded
        user_id: Owner (authenticated principal)
        created_at: Creation timestamp
    """

    id: str
    title: str = Field(..., min_length=1)
    description: str | None = None
    status: ShipmentStatus = ShipmentStatus.PENDING
    extracted_data: ShipmentFields | None = None
    user_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "5f0c3c9e-8d0b-4c55-9a57-4a3f0f7a2b11",
                "title": "Batch A",
                "description": "March export documents",
                "status": "needs review",
                "extracted_data": {"billOfLadingNumber": "ZMLU34110002"},
                "user_id": "c1d2e3f4",
            }
        }
