"""
ExtractionResult model: the tagged outcome of a call to the extraction API.
"""

from pydantic import BaseModel, model_validator

from .shipment import ShipmentFields


class ExtractionResult(BaseModel):
    """
    Outcome of processing a set of documents (ephemeral).

    Attributes:
        success: Whether the API returned usable fields
        data: Normalized fields (only on success)
        error: Human-readable failure message (only on failure)
    """

    success: bool
    data: ShipmentFields | None = None
    error: str | None = None

    @model_validator(mode="after")
    def check_variant(self):
        """A success carries data, a failure carries a message."""
        if self.success and self.data is None:
            raise ValueError("success=True requires data")
        if not self.success and not self.error:
            raise ValueError("success=False requires an error message")
        return self

    @classmethod
    def ok(cls, data: ShipmentFields) -> "ExtractionResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, message: str) -> "ExtractionResult":
        return cls(success=False, error=message)
