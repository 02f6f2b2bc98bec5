"""
Tests for payroll_mapping.transformations -- registry and built-in functions.

Built-ins are pure ``(value, params) -> value`` functions; tests call them
through the registry the way the mapping engine does.
"""

import copy

import pytest

from payroll_kernel.exceptions import TransformationInputError, UnknownTransformationError
from payroll_mapping.transformations import (
    TransformationCategory,
    TransformationStep,
    TransformationTestCase,
    TransformationRegistry,
    default_registry,
)


@pytest.fixture
def registry() -> TransformationRegistry:
    return default_registry()


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_unknown_name_raises_with_available_names(self, registry):
        with pytest.raises(UnknownTransformationError) as exc_info:
            registry.transform("no_such_fn", "x")
        assert exc_info.value.name == "no_such_fn"
        assert "format_ssn" in exc_info.value.available

    def test_register_overwrites(self, registry):
        registry.register("uppercase", lambda value, params: "replaced")
        assert registry.transform("uppercase", "abc") == "replaced"

    def test_register_without_definition_is_composite(self):
        registry = TransformationRegistry()
        registry.register("double", lambda value, params: value * 2)
        assert registry.get("double").category == TransformationCategory.COMPOSITE
        assert "double" in registry
        assert len(registry) == 1

    def test_register_rejects_empty_name(self):
        with pytest.raises(ValueError):
            TransformationRegistry().register("", lambda value, params: value)

    def test_function_errors_propagate_unwrapped(self, registry):
        with pytest.raises(TransformationInputError):
            registry.transform("to_cents", "abc")

    def test_chain_feeds_outputs_forward(self, registry):
        result = registry.chain(
            "  123-45-6789 ",
            [
                TransformationStep("trim_whitespace"),
                {"name": "remove_dashes"},
                TransformationStep("mask", {"visible_chars": 4}),
            ],
        )
        assert result == "*****6789"

    def test_chain_stops_at_first_error(self, registry):
        with pytest.raises(TransformationInputError):
            registry.chain("abc", [TransformationStep("to_cents"), TransformationStep("abs")])

    def test_test_transformation_captures_failure(self, registry):
        result = registry.test_transformation("divide", 10, {"divisor": 0})
        assert result.success is False
        assert "non-zero" in result.error

    def test_validate_test_cases(self, registry):
        outcomes = registry.validate_test_cases("to_cents", [
            TransformationTestCase("50.00", 5000),
            TransformationTestCase("1.5", 999),
        ])
        assert [o.passed for o in outcomes] == [True, False]
        assert outcomes[1].actual == 150

    def test_by_category(self, registry):
        names = {d.name for d in registry.by_category(TransformationCategory.LOOKUP)}
        assert {"lookup_value", "map_code", "map_contribution_type"} <= names
        assert "format_ssn" not in names

    def test_required_params_declared(self, registry):
        assert registry.get("pad_left").required_params == ("length",)
        assert registry.get("calculate_age").required_params == ("as_of_date",)

    def test_list_is_sorted(self, registry):
        names = [d.name for d in registry.list()]
        assert names == sorted(names)


# =============================================================================
# Strings
# =============================================================================


class TestStrings:
    @pytest.mark.parametrize("value, expected", [
        ("123456789", "123-45-6789"),
        ("123-45-6789", "123-45-6789"),
        ("12345", "12345"),
        (None, None),
    ])
    def test_format_ssn(self, registry, value, expected):
        assert registry.transform("format_ssn", value) == expected

    def test_title_case(self, registry):
        assert registry.transform("title_case", "jOHN smith") == "John Smith"

    def test_pad_left(self, registry):
        assert registry.transform("pad_left", 42, {"length": 5}) == "00042"

    def test_pad_right_custom_char(self, registry):
        assert registry.transform("pad_right", "ab", {"length": 4, "char": " "}) == "ab  "

    def test_mask_start(self, registry):
        assert registry.transform("mask", "123456789", {"position": "start"}) == "1234*****"

    def test_mask_short_value_unchanged(self, registry):
        assert registry.transform("mask", "123") == "123"

    def test_concatenate_skips_nulls(self, registry):
        assert registry.transform("concatenate", ["Jane", None, "Doe"]) == "Jane Doe"

    def test_concatenate_non_list(self, registry):
        assert registry.transform("concatenate", "Jane") is None

    def test_replace_first_only(self, registry):
        params = {"pattern": "-", "replacement": "", "global": False}
        assert registry.transform("replace", "1-2-3", params) == "12-3"

    def test_substring(self, registry):
        assert registry.transform("substring", "ABCDEFG", {"start": 2, "end": 5}) == "CDE"

    def test_format_phone_number(self, registry):
        assert registry.transform("format_phone_number", "555.123.4567") == "(555) 123-4567"
        assert registry.transform("format_phone_number", "15551234567") == "+1 (555) 123-4567"

    def test_format_ein(self, registry):
        assert registry.transform("format_ein", "123456789") == "12-3456789"


# =============================================================================
# Numeric
# =============================================================================


class TestNumeric:
    @pytest.mark.parametrize("value, expected", [
        ("50.00", 5000),
        (50, 5000),
        (19.999, 2000),
        ("0.005", 1),
    ])
    def test_to_cents_rounds_half_up(self, registry, value, expected):
        assert registry.transform("to_cents", value) == expected

    def test_to_cents_null_passes_through(self, registry):
        assert registry.transform("to_cents", None) is None

    def test_to_cents_rejects_boolean(self, registry):
        with pytest.raises(TransformationInputError):
            registry.transform("to_cents", True)

    def test_round_to_cents(self, registry):
        assert registry.transform("round_to_cents", 0.125) == 0.13

    def test_convert_to_dollars(self, registry):
        assert registry.transform("convert_to_dollars", 5000) == 50
        assert registry.transform("convert_to_dollars", 5050) == 50.5

    def test_percentage_conversions(self, registry):
        assert registry.transform("convert_to_decimal", 5.5) == 0.055
        assert registry.transform("convert_from_decimal", 0.055) == 5.5
        assert registry.transform("convert_to_basis_points", 5.5) == 550
        assert registry.transform("convert_from_basis_points", 550) == 5.5

    def test_round_with_decimals(self, registry):
        assert registry.transform("round", 2.345, {"decimals": 2}) == 2.35
        assert registry.transform("round", 2.5) == 3

    def test_divide_by_zero_raises(self, registry):
        with pytest.raises(TransformationInputError):
            registry.transform("divide", 10, {"divisor": 0})

    def test_clamp(self, registry):
        assert registry.transform("clamp", 150, {"min": 0, "max": 100}) == 100
        assert registry.transform("clamp", -5, {"min": 0}) == 0

    def test_parse_number_strips_formatting(self, registry):
        assert registry.transform("parse_number", "$1,234.50") == 1234.5

    def test_format_currency(self, registry):
        assert registry.transform("format_currency", 1234.5) == "$1,234.50"
        assert registry.transform("format_currency", -5) == "-$5.00"
        assert registry.transform("format_currency", 1, {"currency": "eur"}) == "€1.00"

    def test_to_integer_truncates_toward_zero(self, registry):
        assert registry.transform("to_integer", -3.7) == -3

    def test_non_numeric_string_raises(self, registry):
        with pytest.raises(TransformationInputError) as exc_info:
            registry.transform("multiply", "ten", {"factor": 2})
        assert exc_info.value.transformation == "multiply"


# =============================================================================
# Dates
# =============================================================================


class TestDates:
    @pytest.mark.parametrize("value", ["2024-01-05", "01/05/2024", "1-5-2024", "20240105"])
    def test_accepted_input_formats(self, registry, value):
        assert registry.transform("format_date_iso", value) == "2024-01-05"

    def test_format_date_us(self, registry):
        assert registry.transform("format_date_us", "2024-01-05") == "01/05/2024"

    def test_format_date_custom_single_pass(self, registry):
        value = "2024-03-05T07:08:09"
        assert registry.transform("format_date_custom", value, {"format": "DD.MM.YY HH:mm"}) == "05.03.24 07:08"
        assert registry.transform("format_date_custom", value, {"format": "M/D/YYYY"}) == "3/5/2024"

    def test_unparseable_date_raises(self, registry):
        with pytest.raises(TransformationInputError):
            registry.transform("format_date_iso", "not a date")

    def test_add_months_clamps_to_month_end(self, registry):
        assert registry.transform("add_months", "2024-01-31", {"months": 1}) == "2024-02-29"
        assert registry.transform("add_months", "2024-11-15", {"months": 3}) == "2025-02-15"

    def test_add_years_from_leap_day(self, registry):
        assert registry.transform("add_years", "2024-02-29", {"years": 1}) == "2025-02-28"

    def test_add_and_subtract_days(self, registry):
        assert registry.transform("add_days", "2024-02-28", {"days": 2}) == "2024-03-01"
        assert registry.transform("subtract_days", "2024-03-01", {"days": 1}) == "2024-02-29"

    def test_period_boundaries(self, registry):
        assert registry.transform("start_of_month", "2023-02-10") == "2023-02-01"
        assert registry.transform("end_of_month", "2023-02-10") == "2023-02-28"
        assert registry.transform("start_of_year", "2023-07-04") == "2023-01-01"
        assert registry.transform("end_of_year", "2023-07-04") == "2023-12-31"

    def test_components(self, registry):
        assert registry.transform("get_year", "2024-08-01") == 2024
        assert registry.transform("get_month", "2024-08-01") == 8
        assert registry.transform("get_day", "2024-08-01") == 1
        assert registry.transform("get_quarter", "2024-08-01") == 3
        assert registry.transform("get_day_of_week", "2024-01-07") == 0

    def test_calculate_age_before_birthday(self, registry):
        params = {"as_of_date": "2024-03-15"}
        assert registry.transform("calculate_age", "1974-03-16", params) == 49
        assert registry.transform("calculate_age", "1974-03-15", params) == 50

    def test_catch_up_eligibility(self, registry):
        params = {"as_of_date": "2024-03-15"}
        assert registry.transform("is_catch_up_eligible", "1974-03-15", params) is True
        assert registry.transform("is_catch_up_eligible", "1974-03-16", params) is False

    def test_relative_functions_require_reference_date(self, registry):
        with pytest.raises(TransformationInputError):
            registry.transform("calculate_age", "1974-03-16")

    @pytest.mark.parametrize("unit, expected", [
        ("days", 60),
        ("weeks", 8),
        ("months", 2),
        ("years", 0),
    ])
    def test_date_diff(self, registry, unit, expected):
        params = {"end_date": "2024-03-01", "unit": unit}
        assert registry.transform("date_diff", "2024-01-01", params) == expected

    def test_date_diff_unknown_unit(self, registry):
        with pytest.raises(TransformationInputError):
            registry.transform("date_diff", "2024-01-01", {"end_date": "2024-03-01", "unit": "fortnights"})

    def test_timestamps(self, registry):
        assert registry.transform("to_timestamp", "1970-01-02") == 86_400_000
        assert registry.transform("from_timestamp", 0) == "1970-01-01T00:00:00+00:00"


# =============================================================================
# Lookup and conditional
# =============================================================================


class TestLookup:
    @pytest.mark.parametrize("value, expected", [
        ("pre-tax", "1"),
        ("Roth 401k", "2"),
        ("catch_up", "4"),
        ("MATCH", "5"),
        ("something else", "something else"),
    ])
    def test_map_contribution_type(self, registry, value, expected):
        assert registry.transform("map_contribution_type", value) == expected

    def test_map_employee_status(self, registry):
        assert registry.transform("map_employee_status", "terminated") == "T"
        assert registry.transform("map_employee_status", "on leave") == "L"

    def test_map_pay_frequency(self, registry):
        assert registry.transform("map_pay_frequency", "bi-weekly") == "B"

    def test_custom_mapping_replaces_builtin(self, registry):
        params = {"mapping": {"PRE_TAX": "PT"}}
        assert registry.transform("map_contribution_type", "pre tax", params) == "PT"

    def test_lookup_value(self, registry):
        params = {"lookup_table": {"A": 1}, "default_value": 0}
        assert registry.transform("lookup_value", "A", params) == 1
        assert registry.transform("lookup_value", "B", params) == 0

    def test_lookup_value_miss_without_default(self, registry):
        assert registry.transform("lookup_value", "B", {"lookup_table": {"A": 1}}) is None

    def test_map_code_upper_cases(self, registry):
        assert registry.transform("map_code", "a", {"mapping": {"A": "Alpha"}}) == "Alpha"

    def test_coalesce_and_first_non_null(self, registry):
        assert registry.transform("coalesce", [None, " ", "x"]) == "x"
        assert registry.transform("first_non_null", [None, " ", "x"]) == " "

    def test_default_if_empty(self, registry):
        assert registry.transform("default_if_empty", "", {"default_value": "N/A"}) == "N/A"
        assert registry.transform("default_if_null", "", {"default_value": "N/A"}) == ""

    def test_if_then_else(self, registry):
        params = {"operator": "greater_than", "compare_value": 5, "then": "hi", "else": "lo"}
        assert registry.transform("if_then_else", 10, params) == "hi"
        assert registry.transform("if_then_else", 1, params) == "lo"

    def test_if_then_else_unknown_operator(self, registry):
        with pytest.raises(TransformationInputError):
            registry.transform("if_then_else", 1, {"operator": "roughly"})

    def test_switch_case_and_decode(self, registry):
        assert registry.transform("switch_case", "M", {"cases": {"M": "Monthly"}}) == "Monthly"
        assert registry.transform("decode", 2, {"pairs": [[1, "one"], [2, "two"]]}) == "two"

    def test_nvl2(self, registry):
        params = {"if_not_null": "set", "if_null": "unset"}
        assert registry.transform("nvl2", 0, params) == "set"
        assert registry.transform("nvl2", None, params) == "unset"


# =============================================================================
# Validators
# =============================================================================


class TestValidators:
    @pytest.mark.parametrize("value, expected", [
        ("123-45-6789", True),
        ("000-12-3456", False),
        ("666-12-3456", False),
        ("900-12-3456", False),
        ("123-00-6789", False),
        ("123-45-0000", False),
        ("12345", False),
        (None, False),
    ])
    def test_validate_ssn(self, registry, value, expected):
        assert registry.transform("validate_ssn", value) is expected

    def test_validate_ein_prefix(self, registry):
        assert registry.transform("validate_ein", "12-3456789") is True
        assert registry.transform("validate_ein", "07-3456789") is False

    def test_validate_routing_number_checksum(self, registry):
        assert registry.transform("validate_routing_number", "011000015") is True
        assert registry.transform("validate_routing_number", "011000016") is False

    def test_validate_range_never_raises(self, registry):
        assert registry.transform("validate_range", "abc", {"min": 0}) is False
        assert registry.transform("validate_range", 5, {"min": 0, "max": 10}) is True

    def test_validate_dates_against_reference(self, registry):
        params = {"as_of_date": "2024-06-01"}
        assert registry.transform("validate_future_date", "2025-01-01", params) is True
        assert registry.transform("validate_past_date", "2025-01-01", params) is False
        assert registry.transform("validate_past_date", "garbage", params) is False

    def test_validate_misc_formats(self, registry):
        assert registry.transform("validate_email", "a@b.co") is True
        assert registry.transform("validate_email", "a@b") is False
        assert registry.transform("validate_zip_code", "12345-6789") is True
        assert registry.transform("validate_phone", "555-123-4567") is True
        assert registry.transform("validate_pattern", "AB12", {"pattern": "^[A-Z]+\\d+$"}) is True
        assert registry.transform("validate_pattern", "AB12", {"pattern": "("}) is False


# =============================================================================
# Purity across the catalogue
# =============================================================================

# One workable value for every required param a built-in declares.
_REQUIRED_PARAM_VALUES = {
    "as_of_date": "2024-03-15",
    "format": "MM/DD/YYYY",
    "days": 3,
    "months": 1,
    "years": 1,
    "end_date": "2024-12-31",
    "lookup_table": {"a": "A"},
    "mapping": {"a": "A"},
    "default_value": "fallback",
    "operator": "==",
    "then": "Y",
    "else": "N",
    "cases": {"a": "A"},
    "replacement": "R",
    "if_not_null": "Y",
    "if_null": "N",
    "pairs": [["a", "A"]],
    "factor": 2,
    "divisor": 4,
    "value": 1,
    "pattern": "a",
    "length": 10,
    "values": ["a", "b"],
}

_PURITY_INPUTS = [
    "  Hello World  ",
    "123-45-6789",
    "2024-02-29",
    "$1,234.50",
    ["a", None, "b"],
    {"a": 1, "nested": {"b": [1, 2]}},
    42.5,
    None,
]


def _outcome(registry, name, value, params):
    try:
        return ("ok", registry.transform(name, value, params))
    except Exception as exc:
        return ("error", type(exc), str(exc))


class TestPurity:
    @pytest.mark.parametrize("name", default_registry().names())
    def test_builtin_is_deterministic_and_leaves_inputs_alone(self, registry, name):
        required = registry.get(name).required_params
        assert set(required) <= set(_REQUIRED_PARAM_VALUES)
        params = {param: _REQUIRED_PARAM_VALUES[param] for param in required}

        for original in _PURITY_INPUTS:
            value = copy.deepcopy(original)
            call_params = copy.deepcopy(params)

            first = _outcome(registry, name, value, call_params)
            second = _outcome(registry, name, value, call_params)

            assert first == second, f"{name}({original!r}) differs between calls"
            assert value == original, f"{name} mutated its input {original!r}"
            assert call_params == params, f"{name} mutated its params"
