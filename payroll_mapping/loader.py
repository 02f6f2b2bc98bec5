"""
Rule Loader (``payroll_mapping.loader``).

Responsibility
--------------
Parses human-authored YAML (or equivalent dicts) into ``MappingRuleSet`` and
``ValidationRule`` objects.  Used by the dry-run CLI, by tests, and by
operators seeding rule sets through ``RuleSetService.create``.

Architecture position
---------------------
**Mapping layer** -- configuration tooling.  Reuses
``payroll_config.loader.load_yaml_file``; produces only frozen domain types.

Invariants enforced
-------------------
* Required keys are never silently defaulted: a missing ``id``,
  ``mapping_type``, ``source_field`` or ``destination_field`` (and so on)
  raises ``ConfigurationError`` naming the key and its location.
* Enum-valued keys (``mapping_type``, ``rounding``, ``apply_when``,
  ``rule_type``, ``severity``, ``operator``) must name a known member.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing keys or unknown enum values  -> ``ConfigurationError``.

Parsing does NOT check transformation names or expression syntax; that is
``rule_validator.validate_rule_set``'s job at activation and execution time.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Mapping, TypeVar

from payroll_config.loader import load_yaml_file
from payroll_kernel.exceptions import ConfigurationError
from payroll_mapping.domain.types import (
    ApplyWhen,
    CalculatedField,
    ConditionalAssignment,
    ConditionalMapping,
    DefaultValue,
    FieldMapping,
    LookupMapping,
    MappingRules,
    MappingRuleSet,
    MappingType,
    Rounding,
)
from payroll_mapping.validation import (
    RuleLogic,
    ValidationRule,
    ValidationRuleType,
    ValidationSeverity,
)

E = TypeVar("E", bound=Enum)


def _require(data: Mapping[str, Any], key: str, where: str) -> Any:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{where}: expected a mapping, got {type(data).__name__}")
    if key not in data or data[key] is None:
        raise ConfigurationError(f"{where}: missing required key '{key}'")
    return data[key]


def _enum(enum_cls: type[E], raw: Any, where: str) -> E:
    try:
        return enum_cls(raw)
    except ValueError:
        choices = [m.value for m in enum_cls]
        raise ConfigurationError(
            f"{where}: {raw!r} is not a valid {enum_cls.__name__} (expected one of {choices})"
        ) from None


def _list(data: Mapping[str, Any], key: str, where: str) -> list[Any]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ConfigurationError(f"{where}: '{key}' must be a list")
    return value


# ---------------------------------------------------------------------------
# Mapping rule sets
# ---------------------------------------------------------------------------


def parse_field_mapping(data: Mapping[str, Any], where: str) -> FieldMapping:
    params = data.get("transformation_params") or {}
    if not isinstance(params, Mapping):
        raise ConfigurationError(f"{where}: 'transformation_params' must be a mapping")
    return FieldMapping(
        source_field=str(_require(data, "source_field", where)),
        destination_field=str(_require(data, "destination_field", where)),
        transformation=data.get("transformation"),
        transformation_params=dict(params),
        required=bool(data.get("required", False)),
    )


def parse_conditional_mapping(data: Mapping[str, Any], where: str) -> ConditionalMapping:
    assignments = tuple(
        ConditionalAssignment(
            destination_field=str(_require(m, "destination_field", f"{where}.mappings[{i}]")),
            value=m.get("value"),
        )
        for i, m in enumerate(_list(data, "mappings", where))
    )
    return ConditionalMapping(
        condition=str(_require(data, "condition", where)),
        mappings=assignments,
    )


def parse_calculated_field(data: Mapping[str, Any], where: str) -> CalculatedField:
    return CalculatedField(
        destination_field=str(_require(data, "destination_field", where)),
        formula=str(_require(data, "formula", where)),
        rounding=_enum(Rounding, data.get("rounding", "none"), f"{where}.rounding"),
    )


def parse_lookup_mapping(data: Mapping[str, Any], where: str) -> LookupMapping:
    table = _require(data, "lookup_table", where)
    if not isinstance(table, (str, Mapping)):
        raise ConfigurationError(
            f"{where}: 'lookup_table' must be a table name or an inline mapping"
        )
    return LookupMapping(
        source_field=str(_require(data, "source_field", where)),
        lookup_table=table if isinstance(table, str) else dict(table),
        destination_field=str(_require(data, "destination_field", where)),
        lookup_key=data.get("lookup_key"),
        lookup_value=data.get("lookup_value"),
        default_value=data.get("default_value"),
    )


def parse_default_value(data: Mapping[str, Any], where: str) -> DefaultValue:
    if not isinstance(data, Mapping) or "value" not in data:
        raise ConfigurationError(f"{where}: missing required key 'value'")
    return DefaultValue(
        destination_field=str(_require(data, "destination_field", where)),
        value=data["value"],
        apply_when=_enum(ApplyWhen, data.get("apply_when", "if_null"), f"{where}.apply_when"),
    )


def parse_rules(data: Mapping[str, Any], where: str = "rules") -> MappingRules:
    return MappingRules(
        field_mappings=tuple(
            parse_field_mapping(d, f"{where}.field_mappings[{i}]")
            for i, d in enumerate(_list(data, "field_mappings", where))
        ),
        conditional_mappings=tuple(
            parse_conditional_mapping(d, f"{where}.conditional_mappings[{i}]")
            for i, d in enumerate(_list(data, "conditional_mappings", where))
        ),
        calculated_fields=tuple(
            parse_calculated_field(d, f"{where}.calculated_fields[{i}]")
            for i, d in enumerate(_list(data, "calculated_fields", where))
        ),
        lookup_mappings=tuple(
            parse_lookup_mapping(d, f"{where}.lookup_mappings[{i}]")
            for i, d in enumerate(_list(data, "lookup_mappings", where))
        ),
        default_values=tuple(
            parse_default_value(d, f"{where}.default_values[{i}]")
            for i, d in enumerate(_list(data, "default_values", where))
        ),
    )


def parse_rule_set(data: Mapping[str, Any]) -> MappingRuleSet:
    """Parse a rule-set dict into a ``MappingRuleSet``."""
    where = "rule_set"
    rules = data.get("rules") if isinstance(data, Mapping) else None
    version = data.get("version", 1) if isinstance(data, Mapping) else 1
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise ConfigurationError(f"{where}: 'version' must be a positive integer")
    return MappingRuleSet(
        id=str(_require(data, "id", where)),
        source_system=str(_require(data, "source_system", where)),
        destination_system=str(_require(data, "destination_system", where)),
        mapping_type=_enum(MappingType, _require(data, "mapping_type", where), f"{where}.mapping_type"),
        rules=parse_rules(rules or {}),
        version=version,
        is_active=bool(data.get("is_active", False)),
        name=str(data.get("name", "")),
        organization_id=data.get("organization_id"),
    )


def load_rule_set(path: Path | str) -> MappingRuleSet:
    """Load a single rule set from a YAML file."""
    try:
        return parse_rule_set(load_yaml_file(path))
    except ConfigurationError as exc:
        raise ConfigurationError(str(exc), source=str(path)) from exc


# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------


def parse_validation_rule(data: Mapping[str, Any], where: str = "validation_rule") -> ValidationRule:
    logic = _require(data, "logic", where)
    if not isinstance(logic, Mapping):
        raise ConfigurationError(f"{where}: 'logic' must be a mapping")
    values = logic.get("values")
    if values is not None and not isinstance(values, list):
        raise ConfigurationError(f"{where}.logic: 'values' must be a list")

    return ValidationRule(
        name=str(_require(data, "name", where)),
        rule_type=_enum(ValidationRuleType, _require(data, "rule_type", where), f"{where}.rule_type"),
        applies_to=str(_require(data, "applies_to", where)),
        logic=RuleLogic(
            operator=_require(logic, "operator", f"{where}.logic"),
            value=logic.get("value"),
            min=logic.get("min"),
            max=logic.get("max"),
            pattern=logic.get("pattern"),
            values=tuple(values) if values is not None else None,
        ),
        error_message=str(_require(data, "error_message", where)),
        severity=_enum(ValidationSeverity, data.get("severity", "ERROR"), f"{where}.severity"),
        is_active=bool(data.get("is_active", True)),
        mapping_types=frozenset(
            _enum(MappingType, t, f"{where}.mapping_types")
            for t in _list(data, "mapping_types", where)
        ),
    )


def parse_validation_rules(data: Mapping[str, Any]) -> tuple[ValidationRule, ...]:
    """Parse ``{"validation_rules": [...]}`` into a tuple of rules."""
    return tuple(
        parse_validation_rule(d, f"validation_rules[{i}]")
        for i, d in enumerate(_list(data, "validation_rules", "validation_rules"))
    )


def load_validation_rules(path: Path | str) -> tuple[ValidationRule, ...]:
    try:
        return parse_validation_rules(load_yaml_file(path))
    except ConfigurationError as exc:
        raise ConfigurationError(str(exc), source=str(path)) from exc


# ---------------------------------------------------------------------------
# Serialization (persistence round trip)
# ---------------------------------------------------------------------------


def rules_to_dict(rules: MappingRules) -> dict[str, Any]:
    """Inverse of ``parse_rules``; JSON-safe for the rule-set table."""
    return {
        "field_mappings": [
            {
                "source_field": m.source_field,
                "destination_field": m.destination_field,
                "transformation": m.transformation,
                "transformation_params": dict(m.transformation_params),
                "required": m.required,
            }
            for m in rules.field_mappings
        ],
        "conditional_mappings": [
            {
                "condition": c.condition,
                "mappings": [
                    {"destination_field": a.destination_field, "value": a.value}
                    for a in c.mappings
                ],
            }
            for c in rules.conditional_mappings
        ],
        "calculated_fields": [
            {
                "destination_field": c.destination_field,
                "formula": c.formula,
                "rounding": c.rounding.value,
            }
            for c in rules.calculated_fields
        ],
        "lookup_mappings": [
            {
                "source_field": m.source_field,
                "lookup_table": m.lookup_table if isinstance(m.lookup_table, str) else dict(m.lookup_table),
                "destination_field": m.destination_field,
                "lookup_key": m.lookup_key,
                "lookup_value": m.lookup_value,
                "default_value": m.default_value,
            }
            for m in rules.lookup_mappings
        ],
        "default_values": [
            {
                "destination_field": d.destination_field,
                "value": d.value,
                "apply_when": d.apply_when.value,
            }
            for d in rules.default_values
        ],
    }
