"""
Rule configuration management.

Loads field validation rules from YAML files and provides the built-in rule
set for the eight shipment fields.
"""

from pathlib import Path
from typing import Any

import yaml

VALID_RULE_TYPES = ("required_field", "length", "regex", "range", "date")


class RuleConfigLoader:
    """
    Loads validation rules from YAML configuration files.

    Expected YAML format:
    ```yaml
    rules:
      container_number:
        - type: length
          params:
            min: 11
            max: 11
            min_message: "Container Number must be 11 characters"
        - type: regex
          params:
            pattern: "[A-Z]{4}[0-9]{7}"
            ignore_case: true

      average_price:
        - type: required_field
        - type: range
          params:
            min: 0.01
            max: 9999999.99
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the rule config loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Rule configuration file not found: {config_path}")

    def load_rules(self) -> list[dict[str, Any]]:
        """
        Load and parse validation rules from YAML file.

        Returns:
            List of rule dictionaries suitable for RuleEngine

        Raises:
            ValueError: If YAML is invalid or missing required fields
        """
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not config or "rules" not in config:
            raise ValueError("Configuration file must contain 'rules' section")

        rules = []
        field_rules = config["rules"]

        for field_name, field_rule_list in field_rules.items():
            if not isinstance(field_rule_list, list):
                raise ValueError(f"Rules for field '{field_name}' must be a list")

            for idx, rule_def in enumerate(field_rule_list):
                rule = self._parse_rule(field_name, rule_def, idx)
                rules.append(rule)

        return rules

    def _parse_rule(self, field_name: str, rule_def: dict[str, Any], idx: int) -> dict[str, Any]:
        """
        Parse a single rule definition.

        Args:
            field_name: The field this rule applies to
            rule_def: The rule definition from YAML
            idx: Index of this rule for the field (for naming)

        Returns:
            Parsed rule dictionary

        Raises:
            ValueError: If rule definition is invalid
        """
        if "type" not in rule_def:
            raise ValueError(f"Rule for field '{field_name}' is missing 'type'")

        rule_type = rule_def["type"]
        if rule_type not in VALID_RULE_TYPES:
            raise ValueError(f"Unknown rule type '{rule_type}' for field '{field_name}'")

        rule_name = rule_def.get("name", f"{field_name}_{rule_type}_{idx}")

        parameters = rule_def.get("params", rule_def.get("parameters", {})) or {}

        severity = rule_def.get("severity", "error")
        if severity not in ("error", "warning"):
            raise ValueError(f"Invalid severity '{severity}' for rule '{rule_name}'. Must be 'error' or 'warning'")

        enabled = rule_def.get("enabled", True)

        return {
            "rule_name": rule_name,
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": parameters,
            "severity": severity,
            "enabled": enabled,
        }


class RuleConfigBuilder:
    """
    Programmatically build rule configurations (built-in rules, tests).
    """

    def __init__(self):
        self.rules: list[dict[str, Any]] = []

    def _add(self, field_name: str, rule_type: str, parameters: dict[str, Any]) -> "RuleConfigBuilder":
        self.rules.append({
            "rule_name": f"{field_name}_{rule_type}",
            "rule_type": rule_type,
            "field_name": field_name,
            "parameters": {k: v for k, v in parameters.items() if v is not None},
            "severity": "error",
            "enabled": True,
        })
        return self

    def add_required_field(
        self,
        field_name: str,
        allow_empty_string: bool = False,
        message: str | None = None,
    ) -> "RuleConfigBuilder":
        """Add a required field rule."""
        return self._add(field_name, "required_field", {
            "allow_empty_string": allow_empty_string,
            "message": message,
        })

    def add_length(
        self,
        field_name: str,
        min_length: int | None = None,
        max_length: int | None = None,
        min_message: str | None = None,
        max_message: str | None = None,
    ) -> "RuleConfigBuilder":
        """Add a string length rule."""
        return self._add(field_name, "length", {
            "min": min_length,
            "max": max_length,
            "min_message": min_message,
            "max_message": max_message,
        })

    def add_regex(
        self,
        field_name: str,
        pattern: str,
        ignore_case: bool = False,
        message: str | None = None,
    ) -> "RuleConfigBuilder":
        """Add a regex validation rule."""
        return self._add(field_name, "regex", {
            "pattern": pattern,
            "ignore_case": ignore_case,
            "message": message,
        })

    def add_range(
        self,
        field_name: str,
        min_value: float | None = None,
        max_value: float | None = None,
        message: str | None = None,
    ) -> "RuleConfigBuilder":
        """Add a numeric range validation rule."""
        return self._add(field_name, "range", {
            "min": min_value,
            "max": max_value,
            "message": message,
        })

    def add_date(
        self,
        field_name: str,
        allow_future: bool = False,
        message: str | None = None,
        future_message: str | None = None,
    ) -> "RuleConfigBuilder":
        """Add a date validation rule."""
        return self._add(field_name, "date", {
            "allow_future": allow_future,
            "message": message,
            "future_message": future_message,
        })

    def build(self) -> list[dict[str, Any]]:
        """Build and return the rule configuration."""
        return self.rules


def default_field_rules() -> list[dict[str, Any]]:
    """
    Built-in rules for the eight shipment fields.

    Returns:
        Rule configuration for RuleEngine
    """
    return (
        RuleConfigBuilder()
        .add_length(
            "bill_of_lading_number", 5, 50,
            min_message="Bill of Lading must be at least 5 characters",
            max_message="Bill of Lading must not exceed 50 characters",
        )
        .add_regex(
            "bill_of_lading_number", r"[A-Z0-9]+", ignore_case=True,
            message="Bill of Lading must contain only letters and numbers",
        )
        .add_length(
            "container_number", 11, 11,
            min_message="Container Number must be 11 characters",
            max_message="Container Number must be 11 characters",
        )
        .add_regex(
            "container_number", r"[A-Z]{4}[0-9]{7}", ignore_case=True,
            message="Container Number must be 4 letters followed by 7 digits (e.g., MSCU1234567)",
        )
        .add_length(
            "consignee_name", 2, 200,
            min_message="Consignee Name must be at least 2 characters",
            max_message="Consignee Name must not exceed 200 characters",
        )
        .add_regex(
            "consignee_name", r"[a-zA-Z0-9\s\-.]+",
            message="Consignee Name can only contain letters, numbers, spaces, hyphens, and periods",
        )
        .add_length(
            "consignee_address", 10, 500,
            min_message="Consignee Address must be at least 10 characters",
            max_message="Consignee Address must not exceed 500 characters",
        )
        .add_required_field("date_of_export", message="Date of Export is required")
        .add_date(
            "date_of_export",
            message="Date of Export must be a valid date",
            future_message="Date of Export cannot be in the future",
        )
        .add_required_field("line_items_count", message="Line Items Count is required")
        .add_regex("line_items_count", r"[0-9]+", message="Line Items Count must be a whole number")
        .add_range(
            "line_items_count", 1, 10000,
            message="Line Items Count must be between 1 and 10,000",
        )
        .add_required_field("average_gross_weight", message="Gross Weight is required")
        .add_regex(
            "average_gross_weight", r"[0-9]+(\.[0-9]+)?",
            message="Gross Weight must be a positive number",
        )
        .add_range(
            "average_gross_weight", 0.01, 999999.99,
            message="Gross Weight must be between 0.01 and 999,999.99 KG",
        )
        .add_required_field("average_price", message="Average Price is required")
        .add_regex(
            "average_price", r"[0-9]+(\.[0-9]+)?",
            message="Average Price must be a positive number",
        )
        .add_range(
            "average_price", 0.01, 9999999.99,
            message="Average Price must be between 0.01 and 9,999,999.99",
        )
        .build()
    )


def load_field_rules(config_path: str | Path | None = None) -> list[dict[str, Any]]:
    """
    Load field rules from a YAML file, falling back to the built-in rules.

    Args:
        config_path: Optional YAML file path

    Returns:
        Rule configuration for RuleEngine
    """
    if config_path is None:
        return default_field_rules()
    return RuleConfigLoader(config_path).load_rules()
