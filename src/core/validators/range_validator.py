"""
RangeValidator - validates numeric values (or numeric strings) are within a specified range.
"""

from typing import Any

from .base_validator import BaseValidator


class RangeValidator(BaseValidator):
    """
    Validates that a numeric field is within a specified range.

    Form values arrive as strings, so string input is parsed as a number
    before the bounds are checked.

    Parameters:
    - min: Minimum value (inclusive)
    - max: Maximum value (inclusive)
    - min_exclusive: Minimum value (exclusive)
    - max_exclusive: Maximum value (exclusive)
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.min_value = self.parameters.get("min")
        self.max_value = self.parameters.get("max")
        self.min_exclusive = self.parameters.get("min_exclusive")
        self.max_exclusive = self.parameters.get("max_exclusive")

        if all(v is None for v in [self.min_value, self.max_value, self.min_exclusive, self.max_exclusive]):
            raise ValueError("RangeValidator requires at least one of: min, max, min_exclusive, max_exclusive")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate that the value is within the specified range.

        Raises:
            ValidationError: If value is not numeric or outside the range
        """
        # Empty values are handled by the required_field validator
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return

        number = self._to_number(value)

        if self.min_value is not None and number < self.min_value:
            raise self.fail(f"Value {value} is less than minimum {self.min_value}")

        if self.min_exclusive is not None and number <= self.min_exclusive:
            raise self.fail(f"Value {value} must be greater than {self.min_exclusive}")

        if self.max_value is not None and number > self.max_value:
            raise self.fail(f"Value {value} exceeds maximum {self.max_value}")

        if self.max_exclusive is not None and number >= self.max_exclusive:
            raise self.fail(f"Value {value} must be less than {self.max_exclusive}")

    def _to_number(self, value: Any) -> float:
        if isinstance(value, bool):
            raise self.fail(f"Value must be numeric, got {type(value).__name__}")
        if isinstance(value, int | float):
            return value
        text = str(value).strip()
        # float() also accepts non-ASCII digits such as "١٨"
        if not text.isascii():
            raise self.fail(f"Value '{value}' is not a number")
        try:
            return float(text)
        except ValueError:
            raise self.fail(f"Value '{value}' is not a number")

    @property
    def rule_type(self) -> str:
        return "range"
