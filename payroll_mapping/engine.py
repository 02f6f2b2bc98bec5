"""
Mapping Execution Engine - apply a MappingRuleSet to a batch of records.

Pure with respect to storage: no session, no clock.  Transformation
functions come from an injected ``TransformationRegistry``; lookup tables
come from the caller's ``MappingContext``.

Usage:
    from payroll_mapping.engine import MappingExecutionEngine
    from payroll_mapping.transformations import default_registry

    engine = MappingExecutionEngine(default_registry())
    result = engine.execute(rule_set, [{"pretax": "50.00"}])
    result.data[0]           # {"employee_pre_tax": 5000}
    result.metrics.failed_records

Per record, rule categories run in a fixed order and each can see what the
earlier ones wrote:

    1. field mappings      (transformation failure -> TRANSFORMATION_ERROR)
    2. conditional mappings (evaluation failure -> warning, condition false)
    3. calculated fields   (evaluation failure -> CALCULATION_ERROR)
    4. lookup mappings     (miss without default -> LOOKUP_NOT_FOUND warning)
    5. default values
    then the required-field check (REQUIRED_FIELD_MISSING).

Exactly one destination record is produced per source record; failed
fields are left absent.  Rule-definition problems are raised as
``RuleSetValidationError`` before any record is processed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Mapping, Sequence

from payroll_kernel.exceptions import ExpressionEvaluationError
from payroll_kernel.logging_config import LogContext, get_logger
from payroll_mapping.domain.types import (
    ApplyWhen,
    LookupMapping,
    MappingContext,
    MappingError,
    MappingErrorCode,
    MappingMetrics,
    MappingResult,
    MappingRuleSet,
    MappingWarning,
    MappingWarningCode,
    Rounding,
    WarningPolicy,
)
from payroll_mapping.expressions import (
    ParsedExpression,
    evaluate_condition,
    evaluate_formula,
    parse_condition,
    parse_formula,
)
from payroll_mapping.rule_validator import ensure_valid, resolve_lookup_table
from payroll_mapping.transformations.numeric import to_output
from payroll_mapping.transformations.registry import (
    TransformationCategory,
    TransformationRegistry,
)

logger = get_logger("mapping.engine")

_CENT = Decimal("0.01")
_ONE = Decimal("1")


@dataclass(frozen=True)
class _CompiledRules:
    """Per-batch parsed expressions and resolved lookup tables."""

    conditions: tuple[ParsedExpression, ...]
    formulas: tuple[ParsedExpression, ...]
    lookup_tables: tuple[dict[str, Any], ...]
    lookup_transformations: frozenset[str]


class _RecordOutcome:
    __slots__ = ("destination", "errors", "warnings", "failed_fields")

    def __init__(self) -> None:
        self.destination: dict[str, Any] = {}
        self.errors: list[MappingError] = []
        self.warnings: list[MappingWarning] = []
        self.failed_fields: set[str] = set()


def round_calculated(value: Decimal, rounding: Rounding) -> int | float:
    """Apply calculated-field rounding and return a JSON-friendly number."""
    if rounding == Rounding.CENTS:
        value = value.quantize(_CENT, rounding=ROUND_HALF_UP)
    elif rounding == Rounding.DOLLARS:
        value = value.quantize(_ONE, rounding=ROUND_HALF_UP)
    return to_output(value)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple)):
        return len(value) == 0
    return False


class MappingExecutionEngine:
    """
    Interprets a MappingRuleSet against source records.

    Contract:
        ``execute()`` validates the rule set, then maps every record
        independently and returns a ``MappingResult`` whose ``data`` has the
        same length and order as the input.

    Guarantees:
        - Per-record failures are returned as data, never raised.
        - ``errors``/``warnings`` are ordered by ``record_index``.
        - The registry is only read.

    Non-goals:
        - Does NOT run business validation rules -- see ``ValidationEngine``.
        - Does NOT queue failures -- see ``MappingService.escalate_failures``.
    """

    def __init__(
        self,
        registry: TransformationRegistry,
        warning_policy: WarningPolicy = WarningPolicy.IGNORE_WARNINGS,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self._registry = registry
        self._warning_policy = WarningPolicy(warning_policy)
        self._timer = timer

    @property
    def registry(self) -> TransformationRegistry:
        return self._registry

    @property
    def warning_policy(self) -> WarningPolicy:
        return self._warning_policy

    def execute(
        self,
        rule_set: MappingRuleSet,
        source_records: Sequence[Mapping[str, Any]],
        context: MappingContext | None = None,
    ) -> MappingResult:
        """
        Map ``source_records`` with ``rule_set``.

        Raises:
            RuleSetValidationError: if the rule set references unknown
                transformations, unsupplied or malformed lookup tables, or
                contains expressions outside the restricted grammar.
        """
        context = context or MappingContext()

        with LogContext.bind(
            rule_set_id=rule_set.id, organization_id=context.organization_id,
        ):
            ensure_valid(rule_set, self._registry, context.lookup_tables)
            compiled = self._compile(rule_set, context)

            logger.info(
                "mapping_batch_started",
                extra={
                    "rule_set_version": rule_set.version,
                    "mapping_type": rule_set.mapping_type,
                    "total_records": len(source_records),
                },
            )

            started = self._timer()
            data: list[dict[str, Any]] = []
            errors: list[MappingError] = []
            warnings: list[MappingWarning] = []
            failed = 0

            for index, record in enumerate(source_records):
                outcome = self._map_record(index, record, rule_set, compiled)
                data.append(outcome.destination)
                errors.extend(outcome.errors)
                warnings.extend(outcome.warnings)
                if outcome.errors or (
                    outcome.warnings
                    and self._warning_policy == WarningPolicy.WARNINGS_FAIL_RECORD
                ):
                    failed += 1

            elapsed_ms = (self._timer() - started) * 1000.0
            total = len(source_records)
            metrics = MappingMetrics(
                total_records=total,
                successful_records=total - failed,
                failed_records=failed,
                processing_time_ms=elapsed_ms,
                avg_time_per_record_ms=elapsed_ms / total if total else 0.0,
            )

            logger.info(
                "mapping_batch_completed",
                extra={
                    "rule_set_version": rule_set.version,
                    "total_records": total,
                    "successful_records": metrics.successful_records,
                    "failed_records": failed,
                    "error_count": len(errors),
                    "warning_count": len(warnings),
                    "duration_ms": round(elapsed_ms, 3),
                },
            )

        return MappingResult(
            success=failed == 0,
            data=tuple(data),
            errors=tuple(errors),
            warnings=tuple(warnings),
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    def _compile(self, rule_set: MappingRuleSet, context: MappingContext) -> _CompiledRules:
        rules = rule_set.rules
        lookup_names = frozenset(
            d.name for d in self._registry.by_category(TransformationCategory.LOOKUP)
        )
        return _CompiledRules(
            conditions=tuple(parse_condition(c.condition) for c in rules.conditional_mappings),
            formulas=tuple(parse_formula(c.formula) for c in rules.calculated_fields),
            lookup_tables=tuple(
                resolve_lookup_table(m, context.lookup_tables) for m in rules.lookup_mappings
            ),
            lookup_transformations=lookup_names,
        )

    # -------------------------------------------------------------------------
    # Per-record stages
    # -------------------------------------------------------------------------

    def _map_record(
        self,
        index: int,
        source: Mapping[str, Any],
        rule_set: MappingRuleSet,
        compiled: _CompiledRules,
    ) -> _RecordOutcome:
        outcome = _RecordOutcome()
        self._apply_field_mappings(index, source, rule_set, compiled, outcome)
        self._apply_conditional_mappings(index, source, rule_set, compiled, outcome)
        self._apply_calculated_fields(index, source, rule_set, compiled, outcome)
        self._apply_lookup_mappings(index, source, rule_set, compiled, outcome)
        self._apply_default_values(rule_set, outcome)
        self._check_required_fields(index, source, rule_set, outcome)
        return outcome

    def _apply_field_mappings(
        self,
        index: int,
        source: Mapping[str, Any],
        rule_set: MappingRuleSet,
        compiled: _CompiledRules,
        outcome: _RecordOutcome,
    ) -> None:
        for mapping in rule_set.rules.field_mappings:
            raw = source.get(mapping.source_field)
            value = raw
            if mapping.transformation:
                try:
                    value = self._registry.transform(
                        mapping.transformation, raw, mapping.transformation_params,
                    )
                except Exception as exc:
                    outcome.errors.append(MappingError(
                        record_index=index,
                        field=mapping.destination_field,
                        code=MappingErrorCode.TRANSFORMATION_ERROR.value,
                        message=f"Transformation '{mapping.transformation}' failed: {exc}",
                        source_value=raw,
                    ))
                    outcome.failed_fields.add(mapping.destination_field)
                    outcome.destination.pop(mapping.destination_field, None)
                    continue
                if (
                    value is None
                    and raw is not None
                    and mapping.transformation in compiled.lookup_transformations
                ):
                    outcome.warnings.append(MappingWarning(
                        record_index=index,
                        field=mapping.destination_field,
                        code=MappingWarningCode.LOOKUP_NOT_FOUND.value,
                        message=(
                            f"No match for {raw!r} in '{mapping.transformation}' "
                            f"and no default value"
                        ),
                    ))
            outcome.destination[mapping.destination_field] = value

    def _apply_conditional_mappings(
        self,
        index: int,
        source: Mapping[str, Any],
        rule_set: MappingRuleSet,
        compiled: _CompiledRules,
        outcome: _RecordOutcome,
    ) -> None:
        for conditional, parsed in zip(rule_set.rules.conditional_mappings, compiled.conditions):
            try:
                matched = evaluate_condition(parsed, source, outcome.destination)
            except ExpressionEvaluationError as exc:
                outcome.warnings.append(MappingWarning(
                    record_index=index,
                    code=MappingWarningCode.CONDITION_EVALUATION_FAILED.value,
                    message=f"Condition {conditional.condition!r} treated as false: {exc.reason}",
                ))
                continue
            if matched:
                for assignment in conditional.mappings:
                    outcome.destination[assignment.destination_field] = assignment.value

    def _apply_calculated_fields(
        self,
        index: int,
        source: Mapping[str, Any],
        rule_set: MappingRuleSet,
        compiled: _CompiledRules,
        outcome: _RecordOutcome,
    ) -> None:
        for calc, parsed in zip(rule_set.rules.calculated_fields, compiled.formulas):
            try:
                value = round_calculated(
                    evaluate_formula(parsed, source, outcome.destination), calc.rounding,
                )
            except ExpressionEvaluationError as exc:
                reason = exc.reason
            except ArithmeticError as exc:
                # quantize() beyond context precision
                reason = f"cannot round result: {type(exc).__name__}"
            else:
                outcome.destination[calc.destination_field] = value
                continue
            outcome.errors.append(MappingError(
                record_index=index,
                field=calc.destination_field,
                code=MappingErrorCode.CALCULATION_ERROR.value,
                message=f"Formula {calc.formula!r} failed: {reason}",
            ))
            outcome.failed_fields.add(calc.destination_field)
            outcome.destination.pop(calc.destination_field, None)

    def _apply_lookup_mappings(
        self,
        index: int,
        source: Mapping[str, Any],
        rule_set: MappingRuleSet,
        compiled: _CompiledRules,
        outcome: _RecordOutcome,
    ) -> None:
        for mapping, table in zip(rule_set.rules.lookup_mappings, compiled.lookup_tables):
            raw = _read(mapping, source, outcome.destination)
            key = None if raw is None else str(raw)
            if key is not None and key in table:
                outcome.destination[mapping.destination_field] = table[key]
            elif mapping.default_value is not None:
                outcome.destination[mapping.destination_field] = mapping.default_value
            else:
                outcome.destination[mapping.destination_field] = None
                outcome.warnings.append(MappingWarning(
                    record_index=index,
                    field=mapping.destination_field,
                    code=MappingWarningCode.LOOKUP_NOT_FOUND.value,
                    message=(
                        f"No lookup match for {mapping.source_field}={raw!r} "
                        f"and no default value"
                    ),
                ))

    def _apply_default_values(self, rule_set: MappingRuleSet, outcome: _RecordOutcome) -> None:
        dest = outcome.destination
        for default in rule_set.rules.default_values:
            current = dest.get(default.destination_field)
            if (
                default.apply_when == ApplyWhen.ALWAYS
                or (default.apply_when == ApplyWhen.IF_NULL and current is None)
                or (default.apply_when == ApplyWhen.IF_EMPTY and _is_empty(current))
            ):
                dest[default.destination_field] = default.value

    def _check_required_fields(
        self,
        index: int,
        source: Mapping[str, Any],
        rule_set: MappingRuleSet,
        outcome: _RecordOutcome,
    ) -> None:
        reported: set[str] = set()
        for mapping in rule_set.rules.field_mappings:
            field_name = mapping.destination_field
            if (
                not mapping.required
                or field_name in outcome.failed_fields
                or field_name in reported
                or outcome.destination.get(field_name) is not None
            ):
                continue
            reported.add(field_name)
            outcome.errors.append(MappingError(
                record_index=index,
                field=field_name,
                code=MappingErrorCode.REQUIRED_FIELD_MISSING.value,
                message=(
                    f"Required field '{field_name}' has no value "
                    f"(source field '{mapping.source_field}')"
                ),
                source_value=source.get(mapping.source_field),
            ))


def _read(mapping: LookupMapping, source: Mapping[str, Any], destination: Mapping[str, Any]) -> Any:
    if mapping.source_field in source:
        return source[mapping.source_field]
    return destination.get(mapping.source_field)
