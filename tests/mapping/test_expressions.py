"""
Tests for the restricted condition/formula language.

Covers parsing (accepted grammar and rejected constructs), validation error
reporting, and evaluation semantics: loose vs strict equality, null handling,
arithmetic on Decimal, and failures raised as ExpressionEvaluationError.
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from payroll_kernel.exceptions import ExpressionEvaluationError, InvalidExpressionError
from payroll_mapping.expressions import (
    DESTINATION_ROOT,
    MAX_NESTING_DEPTH,
    SOURCE_ROOT,
    FieldRef,
    evaluate_condition,
    evaluate_formula,
    loose_equals,
    parse_condition,
    parse_formula,
    strict_equals,
    validate_condition,
    validate_formula,
)


class TestParsing:
    @pytest.mark.parametrize("text", [
        "source.catch_up == true",
        "amount > 100 and status == 'A'",
        "amount > 100 && (status == \"A\" || status == \"L\")",
        "not is_null(source.hire_date)",
        "!equals(src.plan, 'PLAN-E')",
        "dest.total >= source.limit * 0.5",
        "contains(source.tags, 'vip')",
        "source.amount === 5",
    ])
    def test_accepted_conditions(self, text):
        parse_condition(text)

    @pytest.mark.parametrize("text, fragment", [
        ("__import__('os')", "Disallowed function call"),
        ("len(source.ssn) > 3", "Disallowed function call"),
        ("foo.bar == 1", "Unknown field root"),
        ("a = 1", "Unexpected character"),
        ("a > 1 > 2", "Unexpected token"),
        ("", "empty"),
        ("(a == 1", "Expected ')'"),
        ("is_null(a, b)", "takes 1 argument"),
        ("a == 1 and", "Unexpected token"),
    ])
    def test_rejected_conditions(self, text, fragment):
        with pytest.raises(InvalidExpressionError) as exc_info:
            parse_condition(text)
        assert fragment in exc_info.value.message

    @pytest.mark.parametrize("text", [
        "dest.employee_pre_tax + dest.employee_roth",
        "(a + b) * 2",
        "-a / 4",
        "source.salary * 0.06",
    ])
    def test_accepted_formulas(self, text):
        parse_formula(text)

    @pytest.mark.parametrize("text", [
        "'abc' + 1",
        "true + 1",
        "equals(a, b)",
        "a == b",
        "a + null",
    ])
    def test_rejected_formulas(self, text):
        with pytest.raises(InvalidExpressionError):
            parse_formula(text)

    def test_field_refs_carry_roots(self):
        parsed = parse_condition("source.a > dest.b or c == 1")
        assert parsed.field_refs() == (
            FieldRef(SOURCE_ROOT, "a"),
            FieldRef(DESTINATION_ROOT, "b"),
            FieldRef(None, "c"),
        )

    def test_error_position_points_at_offending_token(self):
        with pytest.raises(InvalidExpressionError) as exc_info:
            parse_condition("a == 1 $ 2")
        assert exc_info.value.position == 7

    @pytest.mark.parametrize("text", [
        "(" * 300 + "source.a == 1" + ")" * 300,
        "not " * 300 + "true",
        "is_null(" * 300 + "a" + ")" * 300,
        "-" * 300 + "source.a > 0",
    ])
    def test_deep_nesting_rejected(self, text):
        with pytest.raises(InvalidExpressionError) as exc_info:
            parse_condition(text)
        assert "nests too deeply" in exc_info.value.message

    @pytest.mark.parametrize("text", [
        "(" * 300 + "1" + ")" * 300,
        "-" * 300 + "1",
        " + ".join(["dest.amount"] * 300),
        " * ".join(["2"] * 300),
    ])
    def test_deep_formula_rejected(self, text):
        with pytest.raises(InvalidExpressionError):
            parse_formula(text)

    def test_nesting_error_points_at_first_token_past_limit(self):
        with pytest.raises(InvalidExpressionError) as exc_info:
            parse_condition("(" * 300 + "a" + ")" * 300)
        assert exc_info.value.position == MAX_NESTING_DEPTH

    def test_moderate_nesting_accepted(self):
        parse_condition("(" * 20 + "not (source.a == 1)" + ")" * 20)
        parse_formula(" + ".join(["dest.amount"] * 20))



class TestValidation:
    def test_valid_expressions_return_empty_list(self):
        assert validate_condition("a == 1") == []
        assert validate_formula("a + 1") == []

    def test_invalid_condition_reports_message(self):
        errors = validate_condition("system.exit(1)")
        assert len(errors) == 1
        assert errors[0].expression == "system.exit(1)"

    def test_non_string_rejected(self):
        errors = validate_formula(42)
        assert errors[0].message == "Expression must be a string"

    def test_deeply_nested_condition_reports_error(self):
        errors = validate_condition("not " * 300 + "true")
        assert len(errors) == 1
        assert "nests too deeply" in errors[0].message



class TestConditionEvaluation:
    def test_boolean_field(self):
        assert evaluate_condition("source.catch_up == true", {"catch_up": True}) is True
        assert evaluate_condition("source.catch_up == true", {"catch_up": False}) is False

    def test_string_true_is_not_boolean_true(self):
        assert evaluate_condition("source.catch_up == true", {"catch_up": "true"}) is False

    def test_bare_name_prefers_source(self):
        assert evaluate_condition("code == 'S'", {"code": "S"}, {"code": "D"}) is True
        assert evaluate_condition("total > 0", {}, {"total": 5}) is True

    def test_destination_root(self):
        assert evaluate_condition("dest.total > 100", {}, {"total": 150}) is True

    def test_loose_equality_across_types(self):
        assert evaluate_condition("source.division == 5", {"division": "5"}) is True
        assert evaluate_condition("source.division === 5", {"division": "5"}) is False
        assert evaluate_condition("source.division !== 5", {"division": "5"}) is True

    def test_ordering_with_null_is_false(self):
        assert evaluate_condition("a < 5", {"a": None}) is False
        assert evaluate_condition("a >= 5", {}) is False

    def test_ordering_mixed_types_raises(self):
        with pytest.raises(ExpressionEvaluationError):
            evaluate_condition("a < 'x'", {"a": 5})

    def test_string_ordering(self):
        assert evaluate_condition("a < 'b'", {"a": "a"}) is True

    def test_predicates(self):
        record = {"tags": ["vip", "new"], "name": "Jane Doe", "empty": ""}
        assert evaluate_condition("contains(tags, 'vip')", record) is True
        assert evaluate_condition("starts_with(name, 'Jane')", record) is True
        assert evaluate_condition("ends_with(name, 'Roe')", record) is False
        assert evaluate_condition("is_empty(empty)", record) is True
        assert evaluate_condition("is_null(missing)", record) is True
        assert evaluate_condition("greater_than(3, 2)", record) is True

    def test_logical_operators(self):
        record = {"a": 1, "b": 2}
        assert evaluate_condition("a == 1 and b == 2", record) is True
        assert evaluate_condition("a == 2 or b == 2", record) is True
        assert evaluate_condition("not (a == 1)", record) is False

    def test_arithmetic_inside_condition(self):
        assert evaluate_condition("a + b > 2", {"a": 1, "b": "2"}) is True


class TestFormulaEvaluation:
    def test_sum_of_destination_fields(self):
        result = evaluate_formula(
            "dest.employee_pre_tax + dest.employee_roth",
            {},
            {"employee_pre_tax": 5000, "employee_roth": 2500},
        )
        assert result == Decimal("7500")

    def test_missing_and_null_count_as_zero(self):
        assert evaluate_formula("a + b + c", {"a": 1, "b": None}) == Decimal("1")

    def test_precedence_and_parentheses(self):
        record = {"a": 2, "b": 3}
        assert evaluate_formula("a + b * 2", record) == Decimal("8")
        assert evaluate_formula("(a + b) * 2", record) == Decimal("10")
        assert evaluate_formula("-a + 5", record) == Decimal("3")

    def test_result_is_unrounded_decimal(self):
        assert evaluate_formula("a / 3", {"a": 1}) == Decimal(1) / Decimal(3)

    def test_division_by_zero_raises(self):
        with pytest.raises(ExpressionEvaluationError) as exc_info:
            evaluate_formula("a / b", {"a": 1, "b": 0})
        assert "division by zero" in str(exc_info.value)

    def test_non_numeric_operand_raises(self):
        with pytest.raises(ExpressionEvaluationError):
            evaluate_formula("a * 2", {"a": "abc"})

    def test_numeric_strings_are_numbers(self):
        assert evaluate_formula("a * 2", {"a": "12.50"}) == Decimal("25.00")


class TestEquality:
    @given(st.integers())
    def test_integer_equals_its_string(self, n):
        assert loose_equals(n, str(n))
        assert not strict_equals(n, str(n))

    @given(st.integers(), st.integers())
    def test_strict_equality_on_numbers_matches_python(self, a, b):
        assert strict_equals(a, b) == (a == b)

    def test_booleans_never_coerce(self):
        assert not loose_equals(True, 1)
        assert not strict_equals(False, 0)
        assert loose_equals(None, None)
        assert not loose_equals(None, "")
