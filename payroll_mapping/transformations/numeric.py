"""
Numeric transformations.

All arithmetic goes through ``Decimal`` with ROUND_HALF_UP so that money
conversions are exact ("50.00" -> 5000 cents, 0.125 -> 0.13).  Results are
returned as ``int`` when integral and ``float`` otherwise, which keeps mapped
records JSON-serializable.

Null input passes through as None; input that cannot be read as a finite
number raises ``TransformationInputError``.
"""

from __future__ import annotations

import re
from decimal import ROUND_CEILING, ROUND_DOWN, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from payroll_kernel.exceptions import TransformationInputError
from payroll_mapping.transformations.registry import (
    FieldDataType,
    TransformationCategory,
    TransformationParam,
    definition,
)

_CENT = Decimal("0.01")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")
_CURRENCY_FORMATTING = re.compile(r"[$,\s]")

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "CAD": "CA$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}


def to_decimal(name: str, value: Any) -> Decimal:
    """Read ``value`` as a finite Decimal or raise TransformationInputError."""
    if isinstance(value, bool):
        raise TransformationInputError(name, value, "boolean is not a number")
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            raise TransformationInputError(name, value, "not a number") from None
    else:
        raise TransformationInputError(
            name, value, f"unsupported type {type(value).__name__}"
        )
    if not number.is_finite():
        raise TransformationInputError(name, value, "not a finite number")
    return number


def to_output(number: Decimal) -> int | float:
    """int when integral, float otherwise."""
    if number == number.to_integral_value():
        return int(number)
    return float(number)


def _param(name: str, params: Mapping[str, Any], key: str, default: Any = None) -> Decimal:
    raw = params.get(key, default)
    if raw is None:
        raise TransformationInputError(name, raw, f"missing parameter '{key}'")
    return to_decimal(name, raw)


def convert_to_cents(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    cents = to_decimal("convert_to_cents", value) * _HUNDRED
    return int(cents.quantize(_ONE, rounding=ROUND_HALF_UP))


def convert_to_dollars(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return to_output(to_decimal("convert_to_dollars", value) / _HUNDRED)


def round_to_cents(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return to_output(to_decimal("round_to_cents", value).quantize(_CENT, rounding=ROUND_HALF_UP))


def convert_to_decimal(value: Any, params: Mapping[str, Any]) -> Any:
    """Percentage to fraction: 5.5 -> 0.055."""
    if value is None:
        return None
    return to_output(to_decimal("convert_to_decimal", value) / _HUNDRED)


def convert_from_decimal(value: Any, params: Mapping[str, Any]) -> Any:
    """Fraction to percentage: 0.055 -> 5.5."""
    if value is None:
        return None
    return to_output(to_decimal("convert_from_decimal", value) * _HUNDRED)


def convert_to_basis_points(value: Any, params: Mapping[str, Any]) -> Any:
    """Percentage to basis points: 5.5 -> 550."""
    if value is None:
        return None
    bps = to_decimal("convert_to_basis_points", value) * _HUNDRED
    return int(bps.quantize(_ONE, rounding=ROUND_HALF_UP))


def convert_from_basis_points(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return to_output(to_decimal("convert_from_basis_points", value) / _HUNDRED)


def abs_(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return to_output(abs(to_decimal("abs", value)))


def round_(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    decimals = int(params.get("decimals", 0))
    exponent = Decimal(1).scaleb(-decimals)
    return to_output(to_decimal("round", value).quantize(exponent, rounding=ROUND_HALF_UP))


def floor(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return int(to_decimal("floor", value).to_integral_value(rounding=ROUND_FLOOR))


def ceil(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return int(to_decimal("ceil", value).to_integral_value(rounding=ROUND_CEILING))


def multiply(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return to_output(to_decimal("multiply", value) * _param("multiply", params, "factor", 1))


def divide(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    divisor = _param("divide", params, "divisor", 1)
    if divisor == 0:
        raise TransformationInputError("divide", value, "divisor must be non-zero")
    return to_output(to_decimal("divide", value) / divisor)


def add(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return to_output(to_decimal("add", value) + _param("add", params, "value", 0))


def subtract(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return to_output(to_decimal("subtract", value) - _param("subtract", params, "value", 0))


def clamp(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    number = to_decimal("clamp", value)
    if params.get("min") is not None:
        number = max(number, _param("clamp", params, "min"))
    if params.get("max") is not None:
        number = min(number, _param("clamp", params, "max"))
    return to_output(number)


def parse_number(value: Any, params: Mapping[str, Any]) -> Any:
    """Read formatted numbers such as "$1,234.50"."""
    if value is None:
        return None
    if isinstance(value, str):
        value = _CURRENCY_FORMATTING.sub("", value)
    return to_output(to_decimal("parse_number", value))


def format_currency(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    number = to_decimal("format_currency", value).quantize(_CENT, rounding=ROUND_HALF_UP)
    currency = str(params.get("currency", "USD")).upper()
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    sign = "-" if number < 0 else ""
    return f"{sign}{symbol}{abs(number):,.2f}"


def to_integer(value: Any, params: Mapping[str, Any]) -> Any:
    """Truncate toward zero."""
    if value is None:
        return None
    return int(to_decimal("to_integer", value).to_integral_value(rounding=ROUND_DOWN))


_N = TransformationCategory.NUMERIC
_NUM = FieldDataType.NUMBER
_CONVERT_TO_CENTS = definition(
    "convert_to_cents", "Convert to Cents",
    "Converts a dollar amount to whole cents (50.00 -> 5000)", _N, _NUM, _NUM,
)

TRANSFORMATIONS = (
    (_CONVERT_TO_CENTS, convert_to_cents),
    (definition("to_cents", "To Cents", "Alias of convert_to_cents", _N, _NUM, _NUM),
     convert_to_cents),
    (definition("convert_to_dollars", "Convert to Dollars",
                "Converts cents to dollars (5000 -> 50)", _N, _NUM, _NUM),
     convert_to_dollars),
    (definition("round_to_cents", "Round to Cents",
                "Rounds to two decimal places", _N, _NUM, _NUM),
     round_to_cents),
    (definition("convert_to_decimal", "Percentage to Decimal",
                "Converts a percentage to a decimal fraction (5.5 -> 0.055)", _N, _NUM, _NUM),
     convert_to_decimal),
    (definition("convert_from_decimal", "Decimal to Percentage",
                "Converts a decimal fraction to a percentage (0.055 -> 5.5)", _N, _NUM, _NUM),
     convert_from_decimal),
    (definition("convert_to_basis_points", "Percentage to Basis Points",
                "Converts a percentage to basis points (5.5 -> 550)", _N, _NUM, _NUM),
     convert_to_basis_points),
    (definition("convert_from_basis_points", "Basis Points to Percentage",
                "Converts basis points to a percentage (550 -> 5.5)", _N, _NUM, _NUM),
     convert_from_basis_points),
    (definition("abs", "Absolute Value", "Returns the absolute value", _N, _NUM, _NUM),
     abs_),
    (definition("round", "Round", "Rounds half-up to the given decimal places", _N, _NUM, _NUM,
                [TransformationParam("decimals", "number", False,
                                     "Number of decimal places (default: 0)")]),
     round_),
    (definition("floor", "Floor", "Rounds down to an integer", _N, _NUM, _NUM), floor),
    (definition("ceil", "Ceiling", "Rounds up to an integer", _N, _NUM, _NUM), ceil),
    (definition("multiply", "Multiply", "Multiplies by a factor", _N, _NUM, _NUM,
                [TransformationParam("factor", "number", True, "Multiplication factor")]),
     multiply),
    (definition("divide", "Divide", "Divides by a divisor", _N, _NUM, _NUM,
                [TransformationParam("divisor", "number", True, "Divisor (cannot be 0)")]),
     divide),
    (definition("add", "Add", "Adds a value", _N, _NUM, _NUM,
                [TransformationParam("value", "number", True, "Value to add")]),
     add),
    (definition("subtract", "Subtract", "Subtracts a value", _N, _NUM, _NUM,
                [TransformationParam("value", "number", True, "Value to subtract")]),
     subtract),
    (definition("clamp", "Clamp", "Limits a value to a range", _N, _NUM, _NUM,
                [TransformationParam("min", "number", False, "Minimum value"),
                 TransformationParam("max", "number", False, "Maximum value")]),
     clamp),
    (definition("parse_number", "Parse Number",
                "Parses a number, ignoring $, commas and whitespace",
                _N, FieldDataType.STRING, _NUM),
     parse_number),
    (definition("format_currency", "Format Currency", "Formats a number as currency",
                _N, _NUM, FieldDataType.STRING,
                [TransformationParam("currency", "string", False, "Currency code (default: USD)")]),
     format_currency),
    (definition("to_integer", "To Integer", "Truncates to an integer", _N, _NUM, _NUM),
     to_integer),
)
