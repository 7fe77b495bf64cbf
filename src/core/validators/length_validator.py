"""
LengthValidator - validates the character length of a string value.
"""

from typing import Any

from .base_validator import BaseValidator


class LengthValidator(BaseValidator):
    """
    Validates that a string's length is within bounds (inclusive).

    Parameters:
    - min: Minimum length
    - max: Maximum length
    - min_message / max_message: Messages for the individual bounds
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.min_length = self.parameters.get("min")
        self.max_length = self.parameters.get("max")
        self.min_message = self.parameters.get("min_message")
        self.max_message = self.parameters.get("max_message")

        if self.min_length is None and self.max_length is None:
            raise ValueError("LengthValidator requires at least one of: min, max")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate the length of the value.

        Raises:
            ValidationError: If the value is shorter than min or longer than max
        """
        if value is None:
            return

        length = len(str(value))

        if self.min_length is not None and length < self.min_length:
            raise self.fail(self.min_message or f"Value must be at least {self.min_length} characters")

        if self.max_length is not None and length > self.max_length:
            raise self.fail(self.max_message or f"Value must not exceed {self.max_length} characters")

    @property
    def rule_type(self) -> str:
        return "length"
