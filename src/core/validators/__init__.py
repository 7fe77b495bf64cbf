"""
Field validation rule implementations.

Provides validators for required fields, string length, regex patterns,
numeric ranges and dates.
"""

from .base_validator import BaseValidator, ValidationError
from .date_validator import DateValidator, parse_date
from .length_validator import LengthValidator
from .range_validator import RangeValidator
from .regex_validator import RegexValidator
from .required_field_validator import RequiredFieldValidator

__all__ = [
    "BaseValidator",
    "ValidationError",
    "RequiredFieldValidator",
    "LengthValidator",
    "RegexValidator",
    "RangeValidator",
    "DateValidator",
    "parse_date",
]
