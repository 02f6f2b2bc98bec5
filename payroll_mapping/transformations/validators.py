"""
Validation transformations.

Each function returns a boolean and never raises for malformed input:
unparseable values are simply invalid.  ``validate_future_date`` and
``validate_past_date`` compare against a required ``as_of_date`` param.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from payroll_kernel.exceptions import TransformationInputError
from payroll_mapping.transformations.dates import parse_datetime
from payroll_mapping.transformations.numeric import to_decimal
from payroll_mapping.transformations.registry import (
    FieldDataType,
    TransformationCategory,
    TransformationParam,
    definition,
)

_NON_DIGIT = re.compile(r"\D")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_ZIP = re.compile(r"^\d{5}(-\d{4})?$")

# IRS campus prefixes for Employer Identification Numbers.
EIN_PREFIXES: frozenset[str] = frozenset({
    "01", "02", "03", "04", "05", "06", "10", "11", "12", "13", "14", "15",
    "16", "20", "21", "22", "23", "24", "25", "26", "27", "30", "31", "32",
    "33", "34", "35", "36", "37", "38", "39", "40", "41", "42", "43", "44",
    "45", "46", "47", "48", "50", "51", "52", "53", "54", "55", "56", "57",
    "58", "59", "60", "61", "62", "63", "64", "65", "66", "67", "68", "71",
    "72", "73", "74", "75", "76", "77", "80", "81", "82", "83", "84", "85",
    "86", "87", "88", "90", "91", "92", "93", "94", "95", "98", "99",
})


def _number(value: Any):
    try:
        return to_decimal("validate", value)
    except TransformationInputError:
        return None


def _moment(value: Any):
    try:
        return parse_datetime("validate", value)
    except TransformationInputError:
        return None


def _naive(moment):
    return moment.replace(tzinfo=None) if moment.tzinfo is not None else moment


def validate_ssn(value: Any, params: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    digits = _NON_DIGIT.sub("", str(value))
    if len(digits) != 9:
        return False
    area, group, serial = int(digits[:3]), int(digits[3:5]), int(digits[5:])
    if area == 0 or area == 666 or area >= 900:
        return False
    return group != 0 and serial != 0


def validate_ein(value: Any, params: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    digits = _NON_DIGIT.sub("", str(value))
    return len(digits) == 9 and digits[:2] in EIN_PREFIXES


def validate_email(value: Any, params: Mapping[str, Any]) -> bool:
    return value is not None and bool(_EMAIL.match(str(value)))


def validate_phone(value: Any, params: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    digits = _NON_DIGIT.sub("", str(value))
    return len(digits) == 10 or (len(digits) == 11 and digits.startswith("1"))


def validate_positive(value: Any, params: Mapping[str, Any]) -> bool:
    number = None if value is None else _number(value)
    return number is not None and number > 0


def validate_non_negative(value: Any, params: Mapping[str, Any]) -> bool:
    number = None if value is None else _number(value)
    return number is not None and number >= 0


def validate_range(value: Any, params: Mapping[str, Any]) -> bool:
    number = None if value is None else _number(value)
    if number is None:
        return False
    low = _number(params["min"]) if params.get("min") is not None else None
    high = _number(params["max"]) if params.get("max") is not None else None
    if low is not None and number < low:
        return False
    if high is not None and number > high:
        return False
    return True


def validate_not_empty(value: Any, params: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def validate_length(value: Any, params: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    length = len(str(value))
    if params.get("exact") is not None:
        return length == int(params["exact"])
    if params.get("min") is not None and length < int(params["min"]):
        return False
    if params.get("max") is not None and length > int(params["max"]):
        return False
    return True


def validate_pattern(value: Any, params: Mapping[str, Any]) -> bool:
    pattern = params.get("pattern")
    if value is None or not pattern:
        return False
    try:
        return re.search(pattern, str(value)) is not None
    except re.error:
        return False


def validate_in(value: Any, params: Mapping[str, Any]) -> bool:
    values = params.get("values")
    if value is None or not isinstance(values, (list, tuple)):
        return False
    return value in values


def validate_not_in(value: Any, params: Mapping[str, Any]) -> bool:
    values = params.get("values")
    if value is None or not isinstance(values, (list, tuple)):
        return True
    return value not in values


def validate_date(value: Any, params: Mapping[str, Any]) -> bool:
    return value is not None and _moment(value) is not None


def validate_future_date(value: Any, params: Mapping[str, Any]) -> bool:
    moment = None if value is None else _moment(value)
    as_of = _moment(params.get("as_of_date"))
    if moment is None or as_of is None:
        return False
    return _naive(moment) > _naive(as_of)


def validate_past_date(value: Any, params: Mapping[str, Any]) -> bool:
    moment = None if value is None else _moment(value)
    as_of = _moment(params.get("as_of_date"))
    if moment is None or as_of is None:
        return False
    return _naive(moment) < _naive(as_of)


def validate_zip_code(value: Any, params: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    return bool(_ZIP.match(re.sub(r"\s", "", str(value))))


def validate_routing_number(value: Any, params: Mapping[str, Any]) -> bool:
    """ABA routing number with the 3-7-1 checksum."""
    if value is None:
        return False
    digits = [int(c) for c in _NON_DIGIT.sub("", str(value))]
    if len(digits) != 9:
        return False
    checksum = (
        3 * (digits[0] + digits[3] + digits[6])
        + 7 * (digits[1] + digits[4] + digits[7])
        + (digits[2] + digits[5] + digits[8])
    )
    return checksum % 10 == 0


def validate_account_number(value: Any, params: Mapping[str, Any]) -> bool:
    if value is None:
        return False
    return 4 <= len(_NON_DIGIT.sub("", str(value))) <= 17


_V = TransformationCategory.VALIDATION
_ANY = FieldDataType.ANY
_STR = FieldDataType.STRING
_NUM = FieldDataType.NUMBER
_DATE = FieldDataType.DATE
_BOOL = FieldDataType.BOOLEAN
_AS_OF = TransformationParam("as_of_date", "date", True, "Reference date")

TRANSFORMATIONS = (
    (definition("validate_ssn", "Validate SSN", "Validates Social Security Number format and rules",
                _V, _STR, _BOOL),
     validate_ssn),
    (definition("validate_ein", "Validate EIN", "Validates an Employer Identification Number",
                _V, _STR, _BOOL),
     validate_ein),
    (definition("validate_email", "Validate Email", "Validates email address format",
                _V, _STR, _BOOL),
     validate_email),
    (definition("validate_phone", "Validate Phone", "Validates a US phone number", _V, _STR, _BOOL),
     validate_phone),
    (definition("validate_positive", "Validate Positive", "Number greater than zero",
                _V, _NUM, _BOOL),
     validate_positive),
    (definition("validate_non_negative", "Validate Non-Negative", "Number zero or greater",
                _V, _NUM, _BOOL),
     validate_non_negative),
    (definition("validate_range", "Validate Range", "Number within [min, max]", _V, _NUM, _BOOL,
                [TransformationParam("min", "number", False, "Minimum value"),
                 TransformationParam("max", "number", False, "Maximum value")]),
     validate_range),
    (definition("validate_not_empty", "Validate Not Empty", "Value is not null or empty",
                _V, _ANY, _BOOL),
     validate_not_empty),
    (definition("validate_length", "Validate Length", "String length constraints", _V, _STR, _BOOL,
                [TransformationParam("min", "number", False, "Minimum length"),
                 TransformationParam("max", "number", False, "Maximum length"),
                 TransformationParam("exact", "number", False, "Exact length required")]),
     validate_length),
    (definition("validate_pattern", "Validate Pattern", "Matches a regular expression",
                _V, _STR, _BOOL,
                [TransformationParam("pattern", "string", True, "Regular expression pattern")]),
     validate_pattern),
    (definition("validate_in", "Validate In", "Value is one of the allowed values",
                _V, _ANY, _BOOL,
                [TransformationParam("values", "array", True, "Allowed values")]),
     validate_in),
    (definition("validate_not_in", "Validate Not In", "Value is not one of the forbidden values",
                _V, _ANY, _BOOL,
                [TransformationParam("values", "array", True, "Forbidden values")]),
     validate_not_in),
    (definition("validate_date", "Validate Date", "Value parses as a date", _V, _ANY, _BOOL),
     validate_date),
    (definition("validate_future_date", "Validate Future Date", "Date after the reference date",
                _V, _DATE, _BOOL, [_AS_OF]),
     validate_future_date),
    (definition("validate_past_date", "Validate Past Date", "Date before the reference date",
                _V, _DATE, _BOOL, [_AS_OF]),
     validate_past_date),
    (definition("validate_zip_code", "Validate ZIP Code", "US ZIP or ZIP+4", _V, _STR, _BOOL),
     validate_zip_code),
    (definition("validate_routing_number", "Validate Routing Number",
                "ABA routing number checksum", _V, _STR, _BOOL),
     validate_routing_number),
    (definition("validate_account_number", "Validate Account Number",
                "Bank account number of 4 to 17 digits", _V, _STR, _BOOL),
     validate_account_number),
)
