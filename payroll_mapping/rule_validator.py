"""
Rule-Set Validator (``payroll_mapping.rule_validator``).

Responsibility
--------------
Validates a ``MappingRuleSet`` against a ``TransformationRegistry`` (and,
when known, the caller's lookup tables) before the rule set is activated or
executed.

Architecture position
---------------------
**Mapping layer** -- definition-time validation.  Called by
``RuleSetService.activate`` and by ``MappingExecutionEngine.execute`` before
the first record is touched.  Pure: no I/O, no session.

Invariants enforced
-------------------
* Transformation existence -- every referenced name must be registered.
* Required params -- every param a transformation declares as required must
  be supplied in ``transformation_params``.
* Expression safety -- conditions and formulas must parse under the
  restricted grammar (``expressions.py``).
* Lookup references -- inline tables must be mappings; named tables must be
  supplied when the caller's tables are known; row tables need
  ``lookup_key`` and ``lookup_value``.

Failure modes
-------------
* Validation errors (``RuleSetValidationResult.errors``)  -> the rule set
  MUST NOT be activated or executed.
* Validation warnings  -> allowed, but should be reviewed (for example two
  field mappings writing the same destination field).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from payroll_kernel.exceptions import InvalidLookupReferenceError, RuleSetValidationError
from payroll_mapping.domain.types import LookupMapping, MappingRuleSet
from payroll_mapping.expressions import validate_condition, validate_formula
from payroll_mapping.transformations.registry import TransformationRegistry


@dataclass
class RuleSetValidationResult:
    """
    Result of rule-set validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block activation.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def resolve_lookup_table(
    mapping: LookupMapping,
    lookup_tables: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """
    Resolve a lookup mapping's table into a ``str(key) -> value`` dict.

    Raises:
        InvalidLookupReferenceError: if the table is missing or malformed.
    """
    table = mapping.lookup_table
    dest = mapping.destination_field

    if isinstance(table, str):
        if not table:
            raise InvalidLookupReferenceError(dest, table, "lookup table name is empty")
        if lookup_tables is None or table not in lookup_tables:
            raise InvalidLookupReferenceError(
                dest, table, f"lookup table '{table}' was not supplied",
            )
        table = lookup_tables[table]

    if isinstance(table, Mapping):
        return {str(k): v for k, v in table.items()}

    if isinstance(table, (list, tuple)):
        if not mapping.lookup_key or not mapping.lookup_value:
            raise InvalidLookupReferenceError(
                dest, mapping.lookup_table,
                "row tables require lookup_key and lookup_value",
            )
        resolved: dict[str, Any] = {}
        for position, row in enumerate(table):
            if not isinstance(row, Mapping) or mapping.lookup_key not in row:
                raise InvalidLookupReferenceError(
                    dest, mapping.lookup_table,
                    f"row {position} has no '{mapping.lookup_key}' column",
                )
            resolved.setdefault(str(row[mapping.lookup_key]), row.get(mapping.lookup_value))
        return resolved

    raise InvalidLookupReferenceError(
        dest, mapping.lookup_table,
        f"lookup table must be a mapping or a list of rows, got {type(table).__name__}",
    )


def validate_rule_set(
    rule_set: MappingRuleSet,
    registry: TransformationRegistry,
    lookup_tables: Mapping[str, Any] | None = None,
) -> RuleSetValidationResult:
    """
    Validate a rule set.

    Preconditions:
        - ``registry`` holds every transformation the deployment offers.
        - ``lookup_tables`` is the caller's table set, or ``None`` when tables
          are only known at execution time (activation); named tables are
          then not checked.
    Postconditions:
        - A rule set with errors MUST NOT be activated or executed.
    """
    result = RuleSetValidationResult()

    if not rule_set.id:
        result.add_error("Rule set id must be non-empty")

    _validate_field_mappings(rule_set, registry, result)
    _validate_conditional_mappings(rule_set, result)
    _validate_calculated_fields(rule_set, result)
    _validate_lookup_mappings(rule_set, lookup_tables, result)
    _validate_default_values(rule_set, result)

    return result


def ensure_valid(
    rule_set: MappingRuleSet,
    registry: TransformationRegistry,
    lookup_tables: Mapping[str, Any] | None = None,
) -> RuleSetValidationResult:
    """Validate and raise ``RuleSetValidationError`` if any error is found."""
    result = validate_rule_set(rule_set, registry, lookup_tables)
    if not result.is_valid:
        raise RuleSetValidationError(rule_set.id, result.errors)
    return result


def _validate_field_mappings(
    rule_set: MappingRuleSet,
    registry: TransformationRegistry,
    result: RuleSetValidationResult,
) -> None:
    """Check transformation names, required params and duplicate targets."""
    seen: set[str] = set()
    for position, mapping in enumerate(rule_set.rules.field_mappings):
        label = f"Field mapping #{position} ('{mapping.destination_field}')"
        if not mapping.source_field:
            result.add_error(f"{label}: source_field is empty")
        if not mapping.destination_field:
            result.add_error(f"Field mapping #{position}: destination_field is empty")
        elif mapping.destination_field in seen:
            result.add_warning(
                f"{label}: destination field is written by more than one field mapping"
            )
        seen.add(mapping.destination_field)

        if mapping.transformation is None:
            continue
        if not registry.has(mapping.transformation):
            result.add_error(f"{label}: unknown transformation '{mapping.transformation}'")
            continue
        definition = registry.get(mapping.transformation)
        for param in definition.required_params if definition else ():
            if mapping.transformation_params.get(param) is None:
                result.add_error(
                    f"{label}: transformation '{mapping.transformation}' "
                    f"requires param '{param}'"
                )


def _validate_conditional_mappings(
    rule_set: MappingRuleSet, result: RuleSetValidationResult
) -> None:
    for position, conditional in enumerate(rule_set.rules.conditional_mappings):
        for err in validate_condition(conditional.condition):
            result.add_error(
                f"Conditional mapping #{position}: {err.message} "
                f"(at {err.position} in {err.expression!r})"
            )
        if not conditional.mappings:
            result.add_warning(f"Conditional mapping #{position} assigns no fields")
        for assignment in conditional.mappings:
            if not assignment.destination_field:
                result.add_error(f"Conditional mapping #{position}: destination_field is empty")


def _validate_calculated_fields(
    rule_set: MappingRuleSet, result: RuleSetValidationResult
) -> None:
    for calc in rule_set.rules.calculated_fields:
        if not calc.destination_field:
            result.add_error("Calculated field: destination_field is empty")
        for err in validate_formula(calc.formula):
            result.add_error(
                f"Calculated field '{calc.destination_field}': {err.message} "
                f"(at {err.position} in {err.expression!r})"
            )


def _validate_lookup_mappings(
    rule_set: MappingRuleSet,
    lookup_tables: Mapping[str, Any] | None,
    result: RuleSetValidationResult,
) -> None:
    for mapping in rule_set.rules.lookup_mappings:
        label = f"Lookup mapping '{mapping.destination_field}'"
        if not mapping.source_field:
            result.add_error(f"{label}: source_field is empty")
        if not mapping.destination_field:
            result.add_error("Lookup mapping: destination_field is empty")
        if isinstance(mapping.lookup_table, str) and lookup_tables is None:
            if not mapping.lookup_table:
                result.add_error(f"{label}: lookup table name is empty")
            continue
        try:
            resolve_lookup_table(mapping, lookup_tables)
        except InvalidLookupReferenceError as exc:
            result.add_error(f"{label}: {exc.reason}")


def _validate_default_values(
    rule_set: MappingRuleSet, result: RuleSetValidationResult
) -> None:
    for default in rule_set.rules.default_values:
        if not default.destination_field:
            result.add_error("Default value: destination_field is empty")
