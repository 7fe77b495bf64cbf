"""
Rule engine for validating shipment fields.

The rule engine loads validation rules, applies them to the eight shipment
fields, and produces a validation result with one message per failing field.
"""

from typing import Any

from src.core.models import FieldValidationResult, ShipmentFields
from src.core.validators import (
    BaseValidator,
    DateValidator,
    LengthValidator,
    RangeValidator,
    RegexValidator,
    RequiredFieldValidator,
    ValidationError,
)


class RuleEngine:
    """
    Orchestrates validation rules on shipment fields.

    Rules are applied in configuration order. Every rule is evaluated; the
    first error-severity failure of a field becomes that field's message.
    """

    VALIDATOR_REGISTRY = {
        "required_field": RequiredFieldValidator,
        "length": LengthValidator,
        "regex": RegexValidator,
        "range": RangeValidator,
        "date": DateValidator,
    }

    def __init__(self, rules: list[dict[str, Any]]):
        """
        Initialize the rule engine with validation rules.

        Args:
            rules: List of rule configurations, each containing:
                   - rule_name: str
                   - rule_type: str (required_field, length, regex, range, date)
                   - field_name: str
                   - parameters: Dict[str, Any] (optional)
                   - severity: str (error or warning)
                   - enabled: bool (default True)
        """
        self.rules = rules
        self.validators: list[tuple[str, str, BaseValidator]] = []
        self._build_validators()

    def _build_validators(self) -> None:
        """Build validator instances from rule configurations."""
        for rule in self.rules:
            if not rule.get("enabled", True):
                continue

            rule_name = rule["rule_name"]
            rule_type = rule["rule_type"]
            field_name = rule["field_name"]
            parameters = rule.get("parameters", {})
            severity = rule.get("severity", "error")

            validator_class = self.VALIDATOR_REGISTRY.get(rule_type)
            if not validator_class:
                raise ValueError(f"Unknown rule type: {rule_type}")

            try:
                validator = validator_class(field_name, parameters)
                self.validators.append((rule_name, severity, validator))
            except Exception as e:
                raise ValueError(f"Failed to create validator for rule '{rule_name}': {e}")

    def validate_fields(self, fields: ShipmentFields | dict[str, Any]) -> FieldValidationResult:
        """
        Validate shipment fields against all rules.

        Args:
            fields: ShipmentFields or a plain mapping keyed by attribute name

        Returns:
            FieldValidationResult with per-field messages
        """
        if isinstance(fields, ShipmentFields):
            payload = fields.model_dump()
        else:
            payload = dict(fields)

        passed_rules = []
        failed_rules = []
        warnings = []
        errors: dict[str, str] = {}

        for rule_name, severity, validator in self.validators:
            field_name = validator.field_name
            value = payload.get(field_name)

            try:
                validator.validate(value, payload)
                passed_rules.append(rule_name)

            except ValidationError as e:
                if severity == "error":
                    failed_rules.append(rule_name)
                    errors.setdefault(field_name, e.message)
                else:
                    warnings.append(rule_name)

        return FieldValidationResult(
            passed=len(failed_rules) == 0,
            errors=errors,
            passed_rules=passed_rules,
            failed_rules=failed_rules,
            warnings=warnings,
        )

    def validate_field(self, field_name: str, value: Any, fields: ShipmentFields) -> str | None:
        """
        Validate a single candidate value in the context of the other fields.

        Returns:
            The field's error message, or None if it passes
        """
        candidate = fields.merged({field_name: value})
        result = self.validate_fields(candidate)
        return result.errors.get(ShipmentFields.resolve_name(field_name))

    def get_rule_summary(self) -> dict[str, Any]:
        """
        Get summary of loaded rules.

        Returns:
            Dictionary with rule counts and types
        """
        return {
            "total_rules": len(self.validators),
            "rules_by_type": self._count_by_type(),
            "rules_by_severity": self._count_by_severity(),
        }

    def _count_by_type(self) -> dict[str, int]:
        """Count validators by rule type."""
        counts: dict[str, int] = {}
        for _, _, validator in self.validators:
            rule_type = validator.rule_type
            counts[rule_type] = counts.get(rule_type, 0) + 1
        return counts

    def _count_by_severity(self) -> dict[str, int]:
        """Count validators by severity."""
        counts: dict[str, int] = {}
        for _, severity, _ in self.validators:
            counts[severity] = counts.get(severity, 0) + 1
        return counts
