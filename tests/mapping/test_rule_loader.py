"""
Tests for payroll_mapping.loader -- YAML rule sets and validation rules.
"""

from pathlib import Path

import pytest
import yaml

from payroll_kernel.exceptions import ConfigurationError
from payroll_mapping.domain.types import ApplyWhen, MappingType, Rounding
from payroll_mapping.loader import (
    load_rule_set,
    load_validation_rules,
    parse_rule_set,
    parse_rules,
    parse_validation_rules,
    rules_to_dict,
)
from payroll_mapping.rule_validator import validate_rule_set
from payroll_mapping.validation import RuleOperator, ValidationSeverity

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


def _minimal(**overrides):
    data = {
        "id": "minimal",
        "source_system": "a",
        "destination_system": "b",
        "mapping_type": "EMPLOYEE",
    }
    data.update(overrides)
    return data


class TestParseRuleSet:
    def test_minimal_rule_set(self):
        rule_set = parse_rule_set(_minimal())

        assert rule_set.id == "minimal"
        assert rule_set.version == 1
        assert rule_set.is_active is False
        assert rule_set.mapping_type == MappingType.EMPLOYEE
        assert rule_set.rules.field_mappings == ()

    @pytest.mark.parametrize("key", ["id", "source_system", "destination_system", "mapping_type"])
    def test_missing_required_key(self, key):
        data = _minimal()
        del data[key]
        with pytest.raises(ConfigurationError, match=f"missing required key '{key}'"):
            parse_rule_set(data)

    def test_unknown_mapping_type(self):
        with pytest.raises(ConfigurationError, match="not a valid MappingType"):
            parse_rule_set(_minimal(mapping_type="PAYCHECK"))

    @pytest.mark.parametrize("version", [0, -1, "2", True])
    def test_bad_version(self, version):
        with pytest.raises(ConfigurationError):
            parse_rule_set(_minimal(version=version))

    def test_nested_error_names_location(self):
        data = _minimal(rules={"field_mappings": [{"source_field": "a"}]})
        with pytest.raises(ConfigurationError, match=r"rules.field_mappings\[0\]"):
            parse_rule_set(data)

    def test_default_value_requires_value_key(self):
        with pytest.raises(ConfigurationError, match="'value'"):
            parse_rules({"default_values": [{"destination_field": "x"}]})

    def test_default_value_may_be_null(self):
        rules = parse_rules({"default_values": [{"destination_field": "x", "value": None}]})
        assert rules.default_values[0].value is None
        assert rules.default_values[0].apply_when == ApplyWhen.IF_NULL

    def test_lookup_table_type_checked(self):
        with pytest.raises(ConfigurationError):
            parse_rules({"lookup_mappings": [
                {"source_field": "a", "destination_field": "b", "lookup_table": [1, 2]},
            ]})

    def test_category_must_be_list(self):
        with pytest.raises(ConfigurationError, match="must be a list"):
            parse_rules({"field_mappings": {"source_field": "a"}})


class TestRuleSetFiles:
    def test_load_example_rule_set(self, registry):
        rule_set = load_rule_set(CONFIG_DIR / "contribution_rules.yaml")

        assert rule_set.id == "acme-payroll-contributions"
        assert rule_set.mapping_type == MappingType.CONTRIBUTION
        assert rule_set.rules.calculated_fields[0].rounding == Rounding.CENTS
        assert rule_set.rules.lookup_mappings[0].lookup_table == "divisions"
        assert validate_rule_set(rule_set, registry).is_valid

    def test_error_carries_file_path(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text(yaml.safe_dump({"id": "x"}))
        with pytest.raises(ConfigurationError) as exc_info:
            load_rule_set(path)
        assert exc_info.value.source == str(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_rule_set(tmp_path / "nope.yaml")

    def test_rules_round_trip(self):
        rule_set = load_rule_set(CONFIG_DIR / "contribution_rules.yaml")
        assert parse_rules(rules_to_dict(rule_set.rules)) == rule_set.rules


class TestValidationRuleFiles:
    def test_load_example_validation_rules(self):
        rules = load_validation_rules(CONFIG_DIR / "validation_rules.yaml")

        assert [r.name for r in rules] == [
            "402(g) elective deferral limit",
            "SSN format",
            "Payroll date present",
        ]
        assert rules[0].mapping_types == frozenset({MappingType.CONTRIBUTION})
        assert rules[1].is_pattern
        assert rules[1].logic.operator == RuleOperator.MATCHES
        assert rules[2].severity == ValidationSeverity.WARNING

    def test_missing_logic(self):
        data = {"validation_rules": [{
            "name": "n", "rule_type": "FORMAT", "applies_to": "x", "error_message": "m",
        }]}
        with pytest.raises(ConfigurationError, match=r"validation_rules\[0\]"):
            parse_validation_rules(data)

    def test_bad_operator_surfaces_as_configuration_error(self):
        data = {"validation_rules": [{
            "name": "n", "rule_type": "FORMAT", "applies_to": "x", "error_message": "m",
            "logic": {"operator": "approximately"},
        }]}
        with pytest.raises(ConfigurationError):
            parse_validation_rules(data)

    def test_empty_document(self):
        assert parse_validation_rules({}) == ()
