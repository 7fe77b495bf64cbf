"""
FieldValidationResult model representing the outcome of validating the shipment fields (ephemeral).
"""

from typing import Dict, List

from pydantic import BaseModel, Field, field_validator


class FieldValidationResult(BaseModel):
    """
    Outcome of validating a set of shipment fields (not persisted).

    Attributes:
        passed: Overall validation status
        errors: First failure message per field name
        passed_rules: Rules that succeeded
        failed_rules: Rules that failed
        warnings: Rules with severity "warning" that failed
    """

    passed: bool
    errors: Dict[str, str] = Field(default_factory=dict)
    passed_rules: List[str] = Field(default_factory=list)
    failed_rules: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @field_validator('failed_rules')
    @classmethod
    def check_passed_consistency(cls, v, info):
        """Validate that passed=True implies failed_rules is empty."""
        if info.data.get('passed') and len(v) > 0:
            raise ValueError("passed=True but failed_rules is not empty")
        return v

    @property
    def error_count(self) -> int:
        return len(self.errors)

    class Config:
        json_schema_extra = {
            "example": {
                "passed": False,
                "errors": {
                    "container_number": "Container Number must be 11 characters"
                },
                "passed_rules": ["bill_of_lading_number_length"],
                "failed_rules": ["container_number_length"],
                "warnings": [],
            }
        }
