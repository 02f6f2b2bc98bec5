"""
Tests for payroll_mapping.rule_validator.

Verifies that definition-time validation catches unknown transformations,
missing required params, unsafe expressions and unresolvable lookup tables,
and that warnings never block a rule set.
"""

import pytest

from payroll_kernel.exceptions import InvalidLookupReferenceError, RuleSetValidationError
from payroll_mapping.domain.types import (
    CalculatedField,
    ConditionalMapping,
    FieldMapping,
    LookupMapping,
    MappingRules,
    MappingRuleSet,
    MappingType,
)
from payroll_mapping.rule_validator import (
    ensure_valid,
    resolve_lookup_table,
    validate_rule_set,
)


def _rule_set(rule_set_id: str = "rules", **rules) -> MappingRuleSet:
    return MappingRuleSet(
        id=rule_set_id,
        source_system="src",
        destination_system="dst",
        mapping_type=MappingType.EMPLOYEE,
        rules=MappingRules(**rules),
    )


class TestValidateRuleSet:
    def test_fixture_rule_set_is_valid(self, contribution_rule_set, registry):
        result = validate_rule_set(contribution_rule_set, registry)
        assert result.is_valid
        assert result.warnings == []

    def test_empty_id_is_error(self, registry):
        result = validate_rule_set(_rule_set(""), registry)
        assert "Rule set id must be non-empty" in result.errors

    def test_unknown_transformation(self, registry):
        result = validate_rule_set(
            _rule_set(field_mappings=(FieldMapping("a", "b", "shout"),)), registry,
        )
        assert not result.is_valid
        assert "unknown transformation 'shout'" in result.errors[0]

    def test_required_param_missing(self, registry):
        result = validate_rule_set(
            _rule_set(field_mappings=(FieldMapping("dob", "age", "calculate_age"),)), registry,
        )
        assert "requires param 'as_of_date'" in result.errors[0]

    def test_required_param_supplied(self, registry):
        mapping = FieldMapping("dob", "age", "calculate_age", {"as_of_date": "2024-12-31"})
        assert validate_rule_set(_rule_set(field_mappings=(mapping,)), registry).is_valid

    def test_duplicate_destination_is_warning(self, registry):
        result = validate_rule_set(
            _rule_set(field_mappings=(
                FieldMapping("first", "name"),
                FieldMapping("last", "name"),
            )),
            registry,
        )
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_empty_source_field(self, registry):
        result = validate_rule_set(_rule_set(field_mappings=(FieldMapping("", "b"),)), registry)
        assert not result.is_valid

    def test_invalid_condition_and_formula(self, registry):
        result = validate_rule_set(
            _rule_set(
                conditional_mappings=(ConditionalMapping("open('x')"),),
                calculated_fields=(CalculatedField("total", "a +"),),
            ),
            registry,
        )
        assert len(result.errors) == 2
        assert result.errors[0].startswith("Conditional mapping #0")
        assert result.errors[1].startswith("Calculated field 'total'")
        # The conditional also assigns nothing.
        assert result.warnings == ["Conditional mapping #0 assigns no fields"]

    def test_named_table_unchecked_without_tables(self, registry):
        rule_set = _rule_set(lookup_mappings=(LookupMapping("div", "divisions", "plan"),))
        assert validate_rule_set(rule_set, registry).is_valid
        assert not validate_rule_set(rule_set, registry, lookup_tables={}).is_valid

    def test_row_table_without_key_columns(self, registry):
        rule_set = _rule_set(lookup_mappings=(LookupMapping("div", "divisions", "plan"),))
        result = validate_rule_set(
            rule_set, registry, lookup_tables={"divisions": [{"code": "E"}]},
        )
        assert "row tables require lookup_key and lookup_value" in result.errors[0]


class TestEnsureValid:
    def test_raises_with_all_errors(self, registry):
        rule_set = _rule_set(field_mappings=(
            FieldMapping("a", "b", "nope"),
            FieldMapping("c", "d", "pad_left"),
        ))
        with pytest.raises(RuleSetValidationError) as exc_info:
            ensure_valid(rule_set, registry)
        assert exc_info.value.rule_set_id == "rules"
        assert len(exc_info.value.errors) == 2

    def test_deeply_nested_expressions_rejected(self, registry):
        rule_set = _rule_set(
            conditional_mappings=(ConditionalMapping("(" * 300 + "a == 1" + ")" * 300),),
            calculated_fields=(CalculatedField("total", "-" * 300 + "a"),),
        )
        with pytest.raises(RuleSetValidationError) as exc_info:
            ensure_valid(rule_set, registry)
        assert len(exc_info.value.errors) == 2
        assert all("nests too deeply" in error for error in exc_info.value.errors)


    def test_returns_result_with_warnings(self, registry):
        rule_set = _rule_set(conditional_mappings=(ConditionalMapping("a == 1"),))
        result = ensure_valid(rule_set, registry)
        assert result.warnings


class TestResolveLookupTable:
    def test_inline_keys_stringified(self):
        mapping = LookupMapping("k", {1: "one", "2": "two"}, "v")
        assert resolve_lookup_table(mapping, None) == {"1": "one", "2": "two"}

    def test_named_mapping_table(self):
        mapping = LookupMapping("k", "codes", "v")
        assert resolve_lookup_table(mapping, {"codes": {"A": 1}}) == {"A": 1}

    def test_named_row_table_first_row_wins(self):
        mapping = LookupMapping("k", "rows", "v", lookup_key="code", lookup_value="name")
        rows = [{"code": 7, "name": "first"}, {"code": 7, "name": "second"}]
        assert resolve_lookup_table(mapping, {"rows": rows}) == {"7": "first"}

    def test_missing_table(self):
        with pytest.raises(InvalidLookupReferenceError) as exc_info:
            resolve_lookup_table(LookupMapping("k", "codes", "v"), {})
        assert exc_info.value.destination_field == "v"

    def test_row_missing_key_column(self):
        mapping = LookupMapping("k", "rows", "v", lookup_key="code", lookup_value="name")
        with pytest.raises(InvalidLookupReferenceError) as exc_info:
            resolve_lookup_table(mapping, {"rows": [{"name": "x"}]})
        assert "row 0" in exc_info.value.reason

    def test_unsupported_table_type(self):
        with pytest.raises(InvalidLookupReferenceError):
            resolve_lookup_table(LookupMapping("k", "codes", "v"), {"codes": 42})
