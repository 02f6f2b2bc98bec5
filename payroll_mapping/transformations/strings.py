"""String transformations: identifiers, casing, padding, masking."""

from __future__ import annotations

import re
from typing import Any, Mapping

from payroll_mapping.transformations.registry import (
    FieldDataType,
    TransformationCategory,
    TransformationParam,
    definition,
)

_NON_DIGIT = re.compile(r"\D")
_NON_LETTER = re.compile(r"[^a-zA-Z]")


def format_ssn(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    digits = _NON_DIGIT.sub("", str(value))
    if len(digits) != 9:
        return value
    return f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"


def remove_dashes(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return str(value).replace("-", "")


def trim_whitespace(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return str(value).strip()


def uppercase(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return str(value).upper()


def lowercase(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return str(value).lower()


def title_case(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return " ".join(w[:1].upper() + w[1:] for w in str(value).lower().split(" "))


def concatenate(value: Any, params: Mapping[str, Any]) -> Any:
    if not isinstance(value, (list, tuple)):
        return None
    separator = params.get("separator", " ")
    return separator.join(str(v) for v in value if v is not None)


def split(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return str(value).split(params.get("delimiter", " "))


def substring(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    start = int(params.get("start", 0))
    end = params.get("end")
    text = str(value)
    return text[start:] if end is None else text[start:int(end)]


def pad_left(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return str(value).rjust(int(params.get("length", 0)), str(params.get("char", "0")))


def pad_right(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return str(value).ljust(int(params.get("length", 0)), str(params.get("char", "0")))


def replace(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    pattern = params.get("pattern")
    if not pattern:
        return value
    replacement = params.get("replacement", "")
    count = -1 if params.get("global", True) else 1
    return str(value).replace(pattern, replacement, count)


def mask(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    text = str(value)
    visible = int(params.get("visible_chars", 4))
    mask_char = params.get("mask_char", "*")
    if len(text) <= visible:
        return text
    hidden = mask_char * (len(text) - visible)
    if params.get("position", "end") == "start":
        return text[:visible] + hidden
    return hidden + text[len(text) - visible:]


def extract_digits(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return _NON_DIGIT.sub("", str(value))


def extract_letters(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return _NON_LETTER.sub("", str(value))


def format_phone_number(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    digits = _NON_DIGIT.sub("", str(value))
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    return value


def format_ein(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    digits = _NON_DIGIT.sub("", str(value))
    if len(digits) != 9:
        return value
    return f"{digits[:2]}-{digits[2:]}"


_S = TransformationCategory.STRING
_STR = FieldDataType.STRING

TRANSFORMATIONS = (
    (definition("format_ssn", "Format SSN",
                "Formats a 9-digit SSN with dashes (XXX-XX-XXXX)", _S, _STR, _STR),
     format_ssn),
    (definition("remove_dashes", "Remove Dashes",
                "Removes all dashes from a string", _S, _STR, _STR),
     remove_dashes),
    (definition("trim_whitespace", "Trim Whitespace",
                "Removes leading and trailing whitespace", _S, _STR, _STR),
     trim_whitespace),
    (definition("uppercase", "Uppercase", "Converts string to uppercase", _S, _STR, _STR),
     uppercase),
    (definition("lowercase", "Lowercase", "Converts string to lowercase", _S, _STR, _STR),
     lowercase),
    (definition("title_case", "Title Case", "Converts string to title case", _S, _STR, _STR),
     title_case),
    (definition("concatenate", "Concatenate", "Joins a list of values with a separator",
                _S, FieldDataType.ARRAY, _STR,
                [TransformationParam("separator", "string", False,
                                     "Separator between values (default: space)")]),
     concatenate),
    (definition("split", "Split", "Splits a string by a delimiter",
                _S, _STR, FieldDataType.ARRAY,
                [TransformationParam("delimiter", "string", False,
                                     "Delimiter to split by (default: space)")]),
     split),
    (definition("substring", "Substring", "Extracts a portion of a string", _S, _STR, _STR,
                [TransformationParam("start", "number", False, "Start index (default: 0)"),
                 TransformationParam("end", "number", False, "End index (optional)")]),
     substring),
    (definition("pad_left", "Pad Left", "Pads on the left to the given length", _S, _STR, _STR,
                [TransformationParam("length", "number", True, "Target length"),
                 TransformationParam("char", "string", False, "Padding character (default: 0)")]),
     pad_left),
    (definition("pad_right", "Pad Right", "Pads on the right to the given length", _S, _STR, _STR,
                [TransformationParam("length", "number", True, "Target length"),
                 TransformationParam("char", "string", False, "Padding character (default: 0)")]),
     pad_right),
    (definition("replace", "Replace", "Replaces occurrences of a substring", _S, _STR, _STR,
                [TransformationParam("pattern", "string", True, "Substring to replace"),
                 TransformationParam("replacement", "string", False,
                                     "Replacement string (default: empty)"),
                 TransformationParam("global", "boolean", False,
                                     "Replace all occurrences (default: true)")]),
     replace),
    (definition("mask", "Mask", "Masks sensitive data, leaving some characters visible",
                _S, _STR, _STR,
                [TransformationParam("visible_chars", "number", False,
                                     "Number of visible characters (default: 4)"),
                 TransformationParam("mask_char", "string", False, "Masking character (default: *)"),
                 TransformationParam("position", "string", False,
                                     "Visible characters at 'start' or 'end' (default: end)")]),
     mask),
    (definition("extract_digits", "Extract Digits", "Keeps only numeric digits", _S, _STR, _STR),
     extract_digits),
    (definition("extract_letters", "Extract Letters", "Keeps only ASCII letters", _S, _STR, _STR),
     extract_letters),
    (definition("format_phone_number", "Format Phone Number",
                "Formats a US phone number", _S, _STR, _STR),
     format_phone_number),
    (definition("format_ein", "Format EIN",
                "Formats an Employer Identification Number (XX-XXXXXXX)", _S, _STR, _STR),
     format_ein),
)
