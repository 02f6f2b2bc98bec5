"""
payroll_mapping -- Declarative payroll/401(k) record transformation.

    engine = MappingExecutionEngine(default_registry())
    result = engine.execute(rule_set, records, MappingContext(lookup_tables=tables))

Rule sets are data (``domain.types``); transformations are named pure
functions (``transformations``); conditions and formulas use a restricted
grammar (``expressions``); business rules run in a separate pass
(``validation``).
"""

from payroll_mapping.domain.types import (
    ApplyWhen,
    CalculatedField,
    ConditionalAssignment,
    ConditionalMapping,
    DefaultValue,
    FieldMapping,
    LookupMapping,
    MappingContext,
    MappingError,
    MappingMetrics,
    MappingResult,
    MappingRules,
    MappingRuleSet,
    MappingType,
    MappingWarning,
    Rounding,
    WarningPolicy,
)
from payroll_mapping.engine import MappingExecutionEngine
from payroll_mapping.rule_validator import (
    RuleSetValidationResult,
    ensure_valid,
    validate_rule_set,
)
from payroll_mapping.transformations import TransformationRegistry, default_registry
from payroll_mapping.validation import (
    RecordValidationResult,
    RuleLogic,
    RuleOperator,
    ValidationEngine,
    ValidationRule,
    ValidationRuleType,
    ValidationSeverity,
)

__all__ = [
    "ApplyWhen",
    "CalculatedField",
    "ConditionalAssignment",
    "ConditionalMapping",
    "DefaultValue",
    "FieldMapping",
    "LookupMapping",
    "MappingContext",
    "MappingError",
    "MappingExecutionEngine",
    "MappingMetrics",
    "MappingResult",
    "MappingRules",
    "MappingRuleSet",
    "MappingType",
    "MappingWarning",
    "RecordValidationResult",
    "Rounding",
    "RuleLogic",
    "RuleOperator",
    "RuleSetValidationResult",
    "TransformationRegistry",
    "ValidationEngine",
    "ValidationRule",
    "ValidationRuleType",
    "ValidationSeverity",
    "WarningPolicy",
    "default_registry",
    "ensure_valid",
    "validate_rule_set",
]
