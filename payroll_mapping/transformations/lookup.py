"""
Lookup, conditional and null-handling transformations.

Includes the 401(k) code maps used by recordkeeper feeds (contribution
source, employment status, pay frequency).  A caller-supplied ``mapping``
param replaces the built-in table.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from payroll_kernel.exceptions import TransformationInputError
from payroll_mapping.transformations.registry import (
    FieldDataType,
    TransformationCategory,
    TransformationParam,
    definition,
)

_CODE_SEPARATORS = re.compile(r"[\s-]")

CONTRIBUTION_TYPE_CODES: dict[str, str] = {
    "PRE_TAX": "1",
    "PRETAX": "1",
    "TRADITIONAL": "1",
    "ROTH": "2",
    "ROTH_401K": "2",
    "AFTER_TAX": "3",
    "AFTERTAX": "3",
    "CATCH_UP": "4",
    "CATCHUP": "4",
    "EMPLOYER_MATCH": "5",
    "MATCH": "5",
    "EMPLOYER_NON_MATCH": "6",
    "PROFIT_SHARING": "6",
    "LOAN_REPAYMENT": "7",
    "LOAN": "7",
}

EMPLOYEE_STATUS_CODES: dict[str, str] = {
    "ACTIVE": "A",
    "A": "A",
    "TERMINATED": "T",
    "T": "T",
    "LEAVE": "L",
    "ON_LEAVE": "L",
    "L": "L",
    "DECEASED": "D",
    "D": "D",
    "RETIRED": "R",
    "R": "R",
    "SUSPENDED": "S",
    "S": "S",
}

PAY_FREQUENCY_CODES: dict[str, str] = {
    "WEEKLY": "W",
    "W": "W",
    "BI_WEEKLY": "B",
    "BIWEEKLY": "B",
    "B": "B",
    "SEMI_MONTHLY": "S",
    "SEMIMONTHLY": "S",
    "S": "S",
    "MONTHLY": "M",
    "M": "M",
    "QUARTERLY": "Q",
    "Q": "Q",
    "ANNUAL": "A",
    "ANNUALLY": "A",
    "A": "A",
}


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _normalize_code(value: Any) -> str:
    return _CODE_SEPARATORS.sub("_", str(value).strip().upper())


def _first_present(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def lookup_value(value: Any, params: Mapping[str, Any]) -> Any:
    default = params.get("default_value")
    table = params.get("lookup_table")
    if value is None or not table:
        return default
    if not isinstance(table, Mapping):
        raise TransformationInputError("lookup_value", value, "lookup_table must be a mapping")
    return _first_present(table.get(str(value)), default)


def map_code(value: Any, params: Mapping[str, Any]) -> Any:
    default = params.get("default_value")
    if value is None:
        return default
    mapping = params.get("mapping")
    if not mapping:
        return _first_present(default, value)
    return _first_present(mapping.get(str(value).upper()), default, value)


def _map_with(table: Mapping[str, Any], value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return params.get("default_value")
    mapping = params.get("mapping") or table
    return _first_present(mapping.get(_normalize_code(value)), params.get("default_value"), value)


def map_contribution_type(value: Any, params: Mapping[str, Any]) -> Any:
    return _map_with(CONTRIBUTION_TYPE_CODES, value, params)


def map_employee_status(value: Any, params: Mapping[str, Any]) -> Any:
    return _map_with(EMPLOYEE_STATUS_CODES, value, params)


def map_pay_frequency(value: Any, params: Mapping[str, Any]) -> Any:
    return _map_with(PAY_FREQUENCY_CODES, value, params)


def default_if_null(value: Any, params: Mapping[str, Any]) -> Any:
    return params.get("default_value") if value is None else value


def default_if_empty(value: Any, params: Mapping[str, Any]) -> Any:
    return params.get("default_value") if _is_empty(value) else value


def coalesce(value: Any, params: Mapping[str, Any]) -> Any:
    """First non-null, non-blank element of a list."""
    if not isinstance(value, (list, tuple)):
        return value
    for item in value:
        if item is None or (isinstance(item, str) and item.strip() == ""):
            continue
        return item
    return None


def first_non_null(value: Any, params: Mapping[str, Any]) -> Any:
    if not isinstance(value, (list, tuple)):
        return value
    return _first_present(*value)


def _compare(operator: str, value: Any, other: Any) -> bool:
    if operator == "equals":
        return value == other
    if operator == "not_equals":
        return value != other
    if operator in ("greater_than", "less_than", "greater_than_or_equal", "less_than_or_equal"):
        try:
            left, right = float(value), float(other)
        except (TypeError, ValueError):
            return False
        return {
            "greater_than": left > right,
            "less_than": left < right,
            "greater_than_or_equal": left >= right,
            "less_than_or_equal": left <= right,
        }[operator]
    if operator == "contains":
        return str(other) in str(value)
    if operator == "starts_with":
        return str(value).startswith(str(other))
    if operator == "ends_with":
        return str(value).endswith(str(other))
    if operator == "is_null":
        return value is None
    if operator == "is_not_null":
        return value is not None
    if operator == "is_empty":
        return value is None or value == "" or value == [] or value == ()
    if operator == "is_not_empty":
        return not (value is None or value == "" or value == [] or value == ())
    raise TransformationInputError("if_then_else", value, f"unknown operator {operator!r}")


def if_then_else(value: Any, params: Mapping[str, Any]) -> Any:
    operator = params.get("operator", "equals")
    matched = _compare(operator, value, params.get("compare_value"))
    return params.get("then") if matched else params.get("else")


def switch_case(value: Any, params: Mapping[str, Any]) -> Any:
    cases = params.get("cases") or {}
    return _first_present(cases.get(str(value)), params.get("default_value"), value)


def nvl(value: Any, params: Mapping[str, Any]) -> Any:
    return value if value is not None else params.get("replacement")


def nvl2(value: Any, params: Mapping[str, Any]) -> Any:
    if value is not None:
        return _first_present(params.get("if_not_null"), value)
    return params.get("if_null")


def decode(value: Any, params: Mapping[str, Any]) -> Any:
    """Return the result paired with the first matching search value."""
    for pair in params.get("pairs") or ():
        search, result = pair
        if value == search:
            return result
    return _first_present(params.get("default_value"), value)


_L = TransformationCategory.LOOKUP
_C = TransformationCategory.CONDITIONAL
_STR = FieldDataType.STRING
_ANY = FieldDataType.ANY
_DEFAULT = TransformationParam("default_value", "any", False, "Default if not found")
_MAPPING = TransformationParam("mapping", "object", False, "Custom mapping replacing the built-in")

TRANSFORMATIONS = (
    (definition("lookup_value", "Lookup Value", "Looks up a value in a key-value table",
                _L, _STR, _ANY,
                [TransformationParam("lookup_table", "object", True, "Key-value lookup table"),
                 _DEFAULT]),
     lookup_value),
    (definition("map_code", "Map Code", "Maps a code (upper-cased) to another value",
                _L, _STR, _ANY,
                [TransformationParam("mapping", "object", True, "Code mapping"), _DEFAULT]),
     map_code),
    (definition("map_contribution_type", "Map Contribution Type",
                "Maps contribution source names to recordkeeper codes", _L, _STR, _STR,
                [_MAPPING, _DEFAULT]),
     map_contribution_type),
    (definition("map_employee_status", "Map Employee Status",
                "Maps employment status names to single-letter codes", _L, _STR, _STR,
                [_MAPPING, _DEFAULT]),
     map_employee_status),
    (definition("map_pay_frequency", "Map Pay Frequency",
                "Maps pay frequency names to single-letter codes", _L, _STR, _STR,
                [_MAPPING, _DEFAULT]),
     map_pay_frequency),
    (definition("default_if_null", "Default If Null", "Replaces null with a default",
                _C, _ANY, _ANY,
                [TransformationParam("default_value", "any", True, "Default value")]),
     default_if_null),
    (definition("default_if_empty", "Default If Empty",
                "Replaces null, blank strings and empty lists with a default", _C, _ANY, _ANY,
                [TransformationParam("default_value", "any", True, "Default value")]),
     default_if_empty),
    (definition("coalesce", "Coalesce", "First non-null, non-blank value of a list",
                TransformationCategory.COMPOSITE, FieldDataType.ARRAY, _ANY),
     coalesce),
    (definition("first_non_null", "First Non-Null", "First non-null value of a list",
                TransformationCategory.COMPOSITE, FieldDataType.ARRAY, _ANY),
     first_non_null),
    (definition("if_then_else", "If Then Else", "Chooses a value from a comparison",
                _C, _ANY, _ANY,
                [TransformationParam("operator", "string", True, "Comparison operator"),
                 TransformationParam("compare_value", "any", False, "Value to compare against"),
                 TransformationParam("then", "any", True, "Value if the comparison holds"),
                 TransformationParam("else", "any", True, "Value otherwise")]),
     if_then_else),
    (definition("switch_case", "Switch Case", "Chooses a value by exact key", _C, _ANY, _ANY,
                [TransformationParam("cases", "object", True, "Case-value mapping"), _DEFAULT]),
     switch_case),
    (definition("nvl", "NVL", "Replaces null with a replacement value", _C, _ANY, _ANY,
                [TransformationParam("replacement", "any", True, "Replacement value")]),
     nvl),
    (definition("nvl2", "NVL2", "Chooses a value by nullness", _C, _ANY, _ANY,
                [TransformationParam("if_not_null", "any", True, "Value if not null"),
                 TransformationParam("if_null", "any", True, "Value if null")]),
     nvl2),
    (definition("decode", "Decode", "Maps search values to results", _C, _ANY, _ANY,
                [TransformationParam("pairs", "array", True, "List of [search, result] pairs"),
                 _DEFAULT]),
     decode),
)
