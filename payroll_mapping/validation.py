"""
payroll_mapping.validation -- Business-rule validation of mapped records.

Responsibility:
    Evaluate declarative ``ValidationRule`` objects (IRS limits, formats,
    required fields, ranges) against records that have ALREADY been mapped.
    Runs as its own pass after ``MappingExecutionEngine.execute``; the
    mapping loop never calls it.

Architecture position:
    Mapping layer -- pure evaluation, zero I/O, no clock.

Invariants enforced:
    - One ``RecordValidationResult`` per input record, same order.
    - Inactive rules and rules scoped to other mapping types never fire.
    - ``severity=ERROR`` findings make a record invalid; ``WARNING`` and
      ``INFO`` findings are advisory and never change ``valid``.

Failure modes:
    - Malformed rule logic (unknown operator, ``between`` without bounds,
      ``in`` without values) raises ``ConfigurationError`` when the rule is
      built, never during ``validate``.
    - An invalid regular expression makes ``matches`` fail the record.

Usage:
    engine = ValidationEngine([
        ValidationRule(
            name="402(g) deferral limit",
            rule_type=ValidationRuleType.IRS_LIMIT,
            applies_to="employee_pre_tax",
            logic=RuleLogic(operator=RuleOperator.LESS_THAN, value=2_350_000),
            error_message="Deferral exceeds the annual limit",
        ),
    ])
    results = engine.validate(mapped.data, MappingType.CONTRIBUTION)
"""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from payroll_kernel.exceptions import ConfigurationError
from payroll_kernel.logging_config import get_logger
from payroll_mapping.domain.types import MappingType
from payroll_mapping.expressions import as_number, strict_equals

logger = get_logger("mapping.validation")

_GLOB_CHARS = frozenset("*?[")


class ValidationRuleType(str, Enum):
    IRS_LIMIT = "IRS_LIMIT"
    FORMAT = "FORMAT"
    BUSINESS_LOGIC = "BUSINESS_LOGIC"
    REQUIRED_FIELD = "REQUIRED_FIELD"
    RANGE = "RANGE"
    PATTERN = "PATTERN"


class ValidationSeverity(str, Enum):
    ERROR = "ERROR"      # blocks acceptance of the record
    WARNING = "WARNING"
    INFO = "INFO"


class RuleOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"
    MATCHES = "matches"
    NOT_EMPTY = "not_empty"


@dataclass(frozen=True)
class RuleLogic:
    """Predicate a field value must satisfy for the rule to pass."""

    operator: RuleOperator
    value: Any = None
    min: Any = None
    max: Any = None
    pattern: str | None = None
    values: tuple[Any, ...] | None = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "operator", RuleOperator(self.operator))
        except ValueError:
            raise ConfigurationError(
                f"Unknown validation operator {self.operator!r}; expected one of "
                f"{[op.value for op in RuleOperator]}"
            ) from None
        if self.values is not None and not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(self.values))

        op = self.operator
        if op == RuleOperator.BETWEEN and self.min is None and self.max is None:
            raise ConfigurationError("'between' requires 'min' and/or 'max'")
        if op in (RuleOperator.GREATER_THAN, RuleOperator.LESS_THAN) and as_number(self.value) is None:
            raise ConfigurationError(f"'{op.value}' requires a numeric 'value'")
        if op == RuleOperator.IN and self.values is None:
            raise ConfigurationError("'in' requires 'values'")
        if op == RuleOperator.MATCHES and not self.pattern:
            raise ConfigurationError("'matches' requires 'pattern'")


@dataclass(frozen=True)
class ValidationRule:
    """
    A named business rule over one field pattern.

    ``applies_to`` is either an exact field name or an ``fnmatch`` glob
    (``"*_ssn"``).  An empty ``mapping_types`` applies the rule to every
    mapping type.
    """

    name: str
    rule_type: ValidationRuleType
    applies_to: str
    logic: RuleLogic
    error_message: str
    severity: ValidationSeverity = ValidationSeverity.ERROR
    is_active: bool = True
    mapping_types: frozenset[MappingType] = frozenset()

    @property
    def is_pattern(self) -> bool:
        return any(c in _GLOB_CHARS for c in self.applies_to)

    def applies_to_type(self, mapping_type: MappingType | None) -> bool:
        if not self.mapping_types or mapping_type is None:
            return True
        return MappingType(mapping_type) in self.mapping_types


@dataclass(frozen=True)
class ValidationError:
    field: str
    code: str
    message: str
    severity: ValidationSeverity
    value: Any = None


@dataclass(frozen=True)
class RecordValidationResult:
    record_index: int
    valid: bool
    errors: tuple[ValidationError, ...] = ()
    warnings: tuple[ValidationError, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        def row(e: ValidationError) -> dict[str, Any]:
            return {
                "field": e.field,
                "code": e.code,
                "message": e.message,
                "value": e.value,
                "severity": e.severity.value,
            }

        return {
            "record_index": self.record_index,
            "valid": self.valid,
            "errors": [row(e) for e in self.errors],
            "warnings": [row(w) for w in self.warnings],
        }


# =============================================================================
# Operators
# =============================================================================


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def _contains(values: Sequence[Any], value: Any) -> bool:
    return any(strict_equals(candidate, value) for candidate in values)


def check(logic: RuleLogic, value: Any) -> bool:
    """Return True when ``value`` satisfies ``logic``."""
    op = logic.operator

    if op == RuleOperator.EQUALS:
        return strict_equals(value, logic.value)
    if op == RuleOperator.NOT_EQUALS:
        return not strict_equals(value, logic.value)
    if op == RuleOperator.NOT_EMPTY:
        return not _is_blank(value)
    if op == RuleOperator.IN:
        return _contains(logic.values or (), value)
    if op == RuleOperator.NOT_IN:
        return logic.values is None or not _contains(logic.values, value)
    if op == RuleOperator.MATCHES:
        if value is None:
            return False
        try:
            return re.search(logic.pattern or "", str(value)) is not None
        except re.error:
            return False

    # Numeric operators: a non-numeric value never satisfies them.
    number = as_number(value)
    if number is None:
        return False
    if op == RuleOperator.GREATER_THAN:
        return number > as_number(logic.value)
    if op == RuleOperator.LESS_THAN:
        return number < as_number(logic.value)
    if op == RuleOperator.BETWEEN:
        low, high = as_number(logic.min), as_number(logic.max)
        if logic.min is not None and (low is None or number < low):
            return False
        if logic.max is not None and (high is None or number > high):
            return False
        return True

    raise ConfigurationError(f"Unhandled validation operator {op!r}")


# =============================================================================
# Engine
# =============================================================================


class ValidationEngine:
    """
    Applies a fixed set of validation rules to mapped records.

    Contract:
        ``validate(records, mapping_type)`` returns one result per record.
        A rule whose ``applies_to`` is an exact name is checked even when the
        field is absent (the value is then ``None``); a glob rule is checked
        once for every field in the record that matches it.
    """

    def __init__(self, rules: Iterable[ValidationRule] = ()):
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[ValidationRule, ...]:
        return self._rules

    def applicable_rules(self, mapping_type: MappingType | None = None) -> tuple[ValidationRule, ...]:
        return tuple(
            r for r in self._rules if r.is_active and r.applies_to_type(mapping_type)
        )

    def validate(
        self,
        records: Sequence[Mapping[str, Any]],
        mapping_type: MappingType | None = None,
    ) -> tuple[RecordValidationResult, ...]:
        rules = self.applicable_rules(mapping_type)
        results = tuple(
            self.validate_record(index, record, rules)
            for index, record in enumerate(records)
        )

        logger.info(
            "validation_pass_completed",
            extra={
                "mapping_type": mapping_type,
                "rule_count": len(rules),
                "total_records": len(records),
                "invalid_records": sum(1 for r in results if not r.valid),
            },
        )
        return results

    def validate_record(
        self,
        index: int,
        record: Mapping[str, Any],
        rules: Sequence[ValidationRule],
    ) -> RecordValidationResult:
        errors: list[ValidationError] = []
        warnings: list[ValidationError] = []

        for rule in rules:
            for field_name in _target_fields(rule, record):
                value = record.get(field_name)
                if check(rule.logic, value):
                    continue
                finding = ValidationError(
                    field=field_name,
                    code=rule.rule_type.value,
                    message=rule.error_message,
                    severity=rule.severity,
                    value=value,
                )
                if rule.severity == ValidationSeverity.ERROR:
                    errors.append(finding)
                else:
                    warnings.append(finding)

        return RecordValidationResult(
            record_index=index,
            valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )


def _target_fields(rule: ValidationRule, record: Mapping[str, Any]) -> list[str]:
    if not rule.is_pattern:
        return [rule.applies_to]
    return [name for name in record if fnmatch.fnmatchcase(name, rule.applies_to)]


def accepted_indexes(results: Sequence[RecordValidationResult]) -> tuple[int, ...]:
    return tuple(r.record_index for r in results if r.valid)
