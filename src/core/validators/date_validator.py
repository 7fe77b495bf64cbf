"""
DateValidator - validates that a string is a parseable date, optionally not in the future.
"""

from datetime import date, datetime
from typing import Any

from .base_validator import BaseValidator, ValidationError

DEFAULT_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


def parse_date(value: str, formats: tuple[str, ...] = DEFAULT_DATE_FORMATS) -> date | None:
    """
    Parse a date string, trying ISO 8601 first and then the given formats.

    Returns:
        The parsed date, or None if no format matches
    """
    text = value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


class DateValidator(BaseValidator):
    """
    Validates that a value is a parseable date.

    Parameters:
    - allow_future: Accept dates after today (default False); any time on the
      current day counts as not in the future
    - formats: Extra strptime formats to try after ISO 8601
    - future_message: Message used when the date is in the future
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.allow_future = self.parameters.get("allow_future", False)
        self.formats = tuple(self.parameters.get("formats", DEFAULT_DATE_FORMATS))
        self.future_message = self.parameters.get("future_message")

    def validate(self, value: Any, record: dict[str, Any]) -> None:
        """
        Validate the date value.

        Raises:
            ValidationError: If the value cannot be parsed or is in the future
        """
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return

        if isinstance(value, datetime):
            parsed = value.date()
        elif isinstance(value, date):
            parsed = value
        else:
            parsed = parse_date(str(value), self.formats)

        if parsed is None:
            raise self.fail(f"Value '{value}' is not a valid date")

        if not self.allow_future and parsed > date.today():
            raise self.fail_future(f"Date {parsed.isoformat()} is in the future")

    def fail_future(self, default_message: str) -> ValidationError:
        return ValidationError(
            rule_name=self.rule_type,
            field_name=self.field_name,
            message=self.future_message or default_message,
        )

    @property
    def rule_type(self) -> str:
        return "date"
