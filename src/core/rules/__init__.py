"""
Rule engine and configuration for shipment field validation.
"""

from .rule_config import RuleConfigBuilder, RuleConfigLoader, default_field_rules, load_field_rules
from .rule_engine import RuleEngine

__all__ = ["RuleEngine", "RuleConfigLoader", "RuleConfigBuilder", "default_field_rules", "load_field_rules"]
