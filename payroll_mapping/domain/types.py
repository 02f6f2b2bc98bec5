"""
Mapping domain types: rule sets, execution results, metrics.

Frozen dataclasses and str Enums only; ZERO I/O.  Rule sets are declarative
data -- conditions and formulas are strings parsed by
``payroll_mapping.expressions``; transformation names are resolved against a
``TransformationRegistry``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence


class MappingType(str, Enum):
    """Kind of records a rule set maps."""

    CONTRIBUTION = "CONTRIBUTION"
    EMPLOYEE = "EMPLOYEE"
    ELECTION = "ELECTION"
    LOAN = "LOAN"


class Rounding(str, Enum):
    """Rounding applied to a calculated field."""

    CENTS = "cents"      # nearest whole cent (two decimal places)
    DOLLARS = "dollars"  # nearest whole unit
    NONE = "none"


class ApplyWhen(str, Enum):
    """When a default value is written."""

    ALWAYS = "always"
    IF_NULL = "if_null"    # field unset or None
    IF_EMPTY = "if_empty"  # unset, None, "" or []


class WarningPolicy(str, Enum):
    """How mapping warnings affect a record's success classification."""

    IGNORE_WARNINGS = "ignore_warnings"            # warnings are advisory only
    WARNINGS_FAIL_RECORD = "warnings_fail_record"  # any warning fails the record


class MappingErrorCode(str, Enum):
    TRANSFORMATION_ERROR = "TRANSFORMATION_ERROR"
    REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
    CALCULATION_ERROR = "CALCULATION_ERROR"


class MappingWarningCode(str, Enum):
    LOOKUP_NOT_FOUND = "LOOKUP_NOT_FOUND"
    CONDITION_EVALUATION_FAILED = "CONDITION_EVALUATION_FAILED"


# -----------------------------------------------------------------------------
# Rule definitions
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldMapping:
    """Copy one source field to one destination field, optionally transformed."""

    source_field: str
    destination_field: str
    transformation: str | None = None
    transformation_params: Mapping[str, Any] = field(default_factory=dict)
    required: bool = False


@dataclass(frozen=True)
class ConditionalAssignment:
    destination_field: str
    value: Any


@dataclass(frozen=True)
class ConditionalMapping:
    """Assign static values when ``condition`` holds for the record."""

    condition: str
    mappings: tuple[ConditionalAssignment, ...] = ()


@dataclass(frozen=True)
class CalculatedField:
    """Destination value computed from an arithmetic formula."""

    destination_field: str
    formula: str
    rounding: Rounding = Rounding.NONE


@dataclass(frozen=True)
class LookupMapping:
    """
    Resolve a destination value through a key/value table.

    ``lookup_table`` is either an inline mapping or the name of a table
    supplied by the caller in ``MappingContext.lookup_tables``.  Named tables
    may be mappings, or sequences of row dicts read through ``lookup_key`` and
    ``lookup_value``.
    """

    source_field: str
    lookup_table: str | Mapping[str, Any]
    destination_field: str
    lookup_key: str | None = None
    lookup_value: str | None = None
    default_value: Any = None

    @property
    def is_inline(self) -> bool:
        return not isinstance(self.lookup_table, str)


@dataclass(frozen=True)
class DefaultValue:
    destination_field: str
    value: Any
    apply_when: ApplyWhen = ApplyWhen.IF_NULL


@dataclass(frozen=True)
class MappingRules:
    """The five rule categories, applied in declaration order."""

    field_mappings: tuple[FieldMapping, ...] = ()
    conditional_mappings: tuple[ConditionalMapping, ...] = ()
    calculated_fields: tuple[CalculatedField, ...] = ()
    lookup_mappings: tuple[LookupMapping, ...] = ()
    default_values: tuple[DefaultValue, ...] = ()


@dataclass(frozen=True)
class MappingRuleSet:
    """
    A versioned, declarative mapping specification.

    ``id`` is the stable configuration id shared by every version of the
    same mapping; ``(id, version)`` identifies one immutable revision once an
    execution has referenced it.
    """

    id: str
    source_system: str
    destination_system: str
    mapping_type: MappingType
    rules: MappingRules
    version: int = 1
    is_active: bool = False
    name: str = ""
    organization_id: str | None = None


@dataclass(frozen=True)
class MappingContext:
    """Per-invocation context supplied by the caller."""

    organization_id: str | None = None
    lookup_tables: Mapping[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Execution results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class MappingError:
    record_index: int
    code: str
    message: str
    field: str | None = None
    source_value: Any = None


@dataclass(frozen=True)
class MappingWarning:
    record_index: int
    code: str
    message: str
    field: str | None = None


@dataclass(frozen=True)
class MappingMetrics:
    total_records: int
    successful_records: int
    failed_records: int
    processing_time_ms: float
    avg_time_per_record_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "successful_records": self.successful_records,
            "failed_records": self.failed_records,
            "processing_time_ms": self.processing_time_ms,
            "avg_time_per_record_ms": self.avg_time_per_record_ms,
        }


@dataclass(frozen=True)
class MappingResult:
    """
    Outcome of one batch execution.

    ``data[i]`` is the destination record for ``source_records[i]``;
    ``errors``/``warnings`` reference rows through ``record_index``.
    """

    success: bool
    data: tuple[dict[str, Any], ...]
    errors: tuple[MappingError, ...]
    warnings: tuple[MappingWarning, ...]
    metrics: MappingMetrics

    def errors_for(self, record_index: int) -> tuple[MappingError, ...]:
        return tuple(e for e in self.errors if e.record_index == record_index)

    def failed_indexes(self) -> tuple[int, ...]:
        return tuple(sorted({e.record_index for e in self.errors}))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": [dict(row) for row in self.data],
            "errors": [
                {
                    "record_index": e.record_index,
                    "field": e.field,
                    "code": e.code,
                    "message": e.message,
                    "source_value": e.source_value,
                }
                for e in self.errors
            ],
            "warnings": [
                {
                    "record_index": w.record_index,
                    "field": w.field,
                    "code": w.code,
                    "message": w.message,
                }
                for w in self.warnings
            ],
            "metrics": self.metrics.to_dict(),
        }


def empty_metrics() -> MappingMetrics:
    return MappingMetrics(0, 0, 0, 0.0, 0.0)


def summarize_errors(errors: Sequence[MappingError], limit: int = 100) -> list[dict[str, Any]]:
    """JSON-safe summary of the first ``limit`` errors (for execution logs)."""
    return [
        {
            "record_index": e.record_index,
            "field": e.field,
            "code": e.code,
            "message": e.message,
        }
        for e in list(errors)[:limit]
    ]
