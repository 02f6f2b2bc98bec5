"""
Date transformations.

Accepted inputs: ``date``/``datetime`` objects, ISO-8601 strings,
``MM/DD/YYYY``, ``MM-DD-YYYY`` and ``YYYYMMDD``.  Date results are ISO strings
(``YYYY-MM-DD``); component extractors return integers.

Nothing here reads the wall clock.  Functions that are relative to "today"
(``calculate_age``, ``is_catch_up_eligible``, ``date_diff``) take the reference
date as a required parameter.
"""

from __future__ import annotations

import calendar
import re
from datetime import UTC, date, datetime, timedelta
from typing import Any, Mapping

from payroll_kernel.exceptions import TransformationInputError
from payroll_mapping.transformations.registry import (
    FieldDataType,
    TransformationCategory,
    TransformationParam,
    definition,
)

_US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_FORMAT_TOKENS = re.compile(r"YYYY|YY|MM|M|DD|D|HH|H|mm|m|ss|s")


def parse_datetime(name: str, value: Any) -> datetime:
    """Read ``value`` as a datetime or raise TransformationInputError."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        raise TransformationInputError(name, value, "not a date")

    text = value.strip()
    try:
        match = _COMPACT_DATE.match(text)
        if match:
            return datetime(int(match[1]), int(match[2]), int(match[3]))
        match = _US_DATE.match(text)
        if match:
            return datetime(int(match[3]), int(match[1]), int(match[2]))
        return datetime.fromisoformat(text)
    except ValueError:
        raise TransformationInputError(name, value, "not a date") from None


def _param_date(name: str, params: Mapping[str, Any], key: str) -> datetime:
    raw = params.get(key)
    if raw is None:
        raise TransformationInputError(name, raw, f"missing parameter '{key}'")
    return parse_datetime(name, raw)


def _as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(UTC).replace(tzinfo=None)


def _iso_date(moment: datetime) -> str:
    return moment.date().isoformat()


def _shift_months(moment: datetime, months: int) -> datetime:
    index = moment.month - 1 + months
    year, month = moment.year + index // 12, index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _age(birth: datetime, as_of: datetime) -> int:
    years = as_of.year - birth.year
    if (as_of.month, as_of.day) < (birth.month, birth.day):
        years -= 1
    return years


def format_date_iso(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return _iso_date(parse_datetime("format_date_iso", value))


def format_date_us(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    moment = parse_datetime("format_date_us", value)
    return f"{moment.month:02d}/{moment.day:02d}/{moment.year}"


def format_date_custom(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    moment = parse_datetime("format_date_custom", value)
    tokens = {
        "YYYY": f"{moment.year:04d}",
        "YY": f"{moment.year % 100:02d}",
        "MM": f"{moment.month:02d}",
        "M": str(moment.month),
        "DD": f"{moment.day:02d}",
        "D": str(moment.day),
        "HH": f"{moment.hour:02d}",
        "H": str(moment.hour),
        "mm": f"{moment.minute:02d}",
        "m": str(moment.minute),
        "ss": f"{moment.second:02d}",
        "s": str(moment.second),
    }
    pattern = str(params.get("format", "YYYY-MM-DD"))
    return _FORMAT_TOKENS.sub(lambda m: tokens[m.group(0)], pattern)


def parse_date(value: Any, params: Mapping[str, Any]) -> Any:
    """Normalize any accepted date input to an ISO-8601 datetime string."""
    if value is None:
        return None
    return parse_datetime("parse_date", value).isoformat()


def add_days(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    moment = parse_datetime("add_days", value)
    return _iso_date(moment + timedelta(days=int(params.get("days", 0))))


def subtract_days(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    moment = parse_datetime("subtract_days", value)
    return _iso_date(moment - timedelta(days=int(params.get("days", 0))))


def add_months(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    moment = parse_datetime("add_months", value)
    return _iso_date(_shift_months(moment, int(params.get("months", 0))))


def add_years(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    moment = parse_datetime("add_years", value)
    return _iso_date(_shift_months(moment, 12 * int(params.get("years", 0))))


def start_of_month(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return _iso_date(parse_datetime("start_of_month", value).replace(day=1))


def end_of_month(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    moment = parse_datetime("end_of_month", value)
    last = calendar.monthrange(moment.year, moment.month)[1]
    return _iso_date(moment.replace(day=last))


def start_of_year(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return f"{parse_datetime('start_of_year', value).year:04d}-01-01"


def end_of_year(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return f"{parse_datetime('end_of_year', value).year:04d}-12-31"


def get_year(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return parse_datetime("get_year", value).year


def get_month(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return parse_datetime("get_month", value).month


def get_day(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return parse_datetime("get_day", value).day


def get_day_of_week(value: Any, params: Mapping[str, Any]) -> Any:
    """0 = Sunday ... 6 = Saturday."""
    if value is None:
        return None
    return parse_datetime("get_day_of_week", value).isoweekday() % 7


def get_quarter(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    return (parse_datetime("get_quarter", value).month - 1) // 3 + 1


def calculate_age(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    birth = parse_datetime("calculate_age", value)
    return _age(birth, _param_date("calculate_age", params, "as_of_date"))


def is_catch_up_eligible(value: Any, params: Mapping[str, Any]) -> Any:
    """True when the participant has reached the catch-up age (default 50)."""
    if value is None:
        return None
    birth = parse_datetime("is_catch_up_eligible", value)
    as_of = _param_date("is_catch_up_eligible", params, "as_of_date")
    return _age(birth, as_of) >= int(params.get("threshold", 50))


def date_diff(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    start = _as_naive_utc(parse_datetime("date_diff", value))
    end = _as_naive_utc(_param_date("date_diff", params, "end_date"))
    unit = params.get("unit", "days")
    if unit == "days":
        return (end - start).days
    if unit == "weeks":
        return (end - start).days // 7
    if unit == "months":
        return (end.year - start.year) * 12 + (end.month - start.month)
    if unit == "years":
        return end.year - start.year
    raise TransformationInputError("date_diff", value, f"unknown unit {unit!r}")


def to_timestamp(value: Any, params: Mapping[str, Any]) -> Any:
    """Milliseconds since the Unix epoch; naive values are read as UTC."""
    if value is None:
        return None
    moment = parse_datetime("to_timestamp", value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp() * 1000)


def from_timestamp(value: Any, params: Mapping[str, Any]) -> Any:
    if value is None:
        return None
    try:
        millis = int(value)
    except (TypeError, ValueError):
        raise TransformationInputError("from_timestamp", value, "not a timestamp") from None
    return datetime.fromtimestamp(millis / 1000, tz=UTC).isoformat()


_D = TransformationCategory.DATE
_DATE = FieldDataType.DATE
_STR = FieldDataType.STRING
_NUM = FieldDataType.NUMBER
_AS_OF = TransformationParam("as_of_date", "date", True, "Reference date")

TRANSFORMATIONS = (
    (definition("format_date_iso", "Format Date ISO", "Formats a date as YYYY-MM-DD",
                _D, _DATE, _STR),
     format_date_iso),
    (definition("format_date_us", "Format Date US", "Formats a date as MM/DD/YYYY",
                _D, _DATE, _STR),
     format_date_us),
    (definition("format_date_custom", "Format Date Custom", "Formats a date with a pattern",
                _D, _DATE, _STR,
                [TransformationParam("format", "string", True,
                                     "Pattern using YYYY, YY, MM, M, DD, D, HH, H, mm, m, ss, s")]),
     format_date_custom),
    (definition("parse_date", "Parse Date", "Parses a date into an ISO-8601 timestamp",
                _D, _STR, _DATE),
     parse_date),
    (definition("add_days", "Add Days", "Adds days to a date", _D, _DATE, _DATE,
                [TransformationParam("days", "number", True, "Number of days to add")]),
     add_days),
    (definition("subtract_days", "Subtract Days", "Subtracts days from a date", _D, _DATE, _DATE,
                [TransformationParam("days", "number", True, "Number of days to subtract")]),
     subtract_days),
    (definition("add_months", "Add Months", "Adds months, clamping to the month end",
                _D, _DATE, _DATE,
                [TransformationParam("months", "number", True, "Number of months to add")]),
     add_months),
    (definition("add_years", "Add Years", "Adds years, clamping Feb 29", _D, _DATE, _DATE,
                [TransformationParam("years", "number", True, "Number of years to add")]),
     add_years),
    (definition("start_of_month", "Start of Month", "First day of the month", _D, _DATE, _DATE),
     start_of_month),
    (definition("end_of_month", "End of Month", "Last day of the month", _D, _DATE, _DATE),
     end_of_month),
    (definition("start_of_year", "Start of Year", "January 1 of the year", _D, _DATE, _DATE),
     start_of_year),
    (definition("end_of_year", "End of Year", "December 31 of the year", _D, _DATE, _DATE),
     end_of_year),
    (definition("get_year", "Get Year", "Year component", _D, _DATE, _NUM), get_year),
    (definition("get_month", "Get Month", "Month component (1-12)", _D, _DATE, _NUM), get_month),
    (definition("get_day", "Get Day", "Day-of-month component", _D, _DATE, _NUM), get_day),
    (definition("get_day_of_week", "Get Day of Week", "Weekday (0 = Sunday)", _D, _DATE, _NUM),
     get_day_of_week),
    (definition("get_quarter", "Get Quarter", "Calendar quarter (1-4)", _D, _DATE, _NUM),
     get_quarter),
    (definition("calculate_age", "Calculate Age", "Whole years between birth date and as-of date",
                _D, _DATE, _NUM, [_AS_OF]),
     calculate_age),
    (definition("is_catch_up_eligible", "Catch-up Eligible",
                "Whether the participant has reached catch-up contribution age",
                _D, _DATE, FieldDataType.BOOLEAN,
                [TransformationParam("threshold", "number", False, "Age threshold (default: 50)"),
                 _AS_OF]),
     is_catch_up_eligible),
    (definition("date_diff", "Date Difference", "Difference between two dates",
                _D, _DATE, _NUM,
                [TransformationParam("end_date", "date", True, "End date"),
                 TransformationParam("unit", "string", False,
                                     "days, weeks, months or years (default: days)")]),
     date_diff),
    (definition("to_timestamp", "To Timestamp", "Milliseconds since the Unix epoch",
                _D, _DATE, _NUM),
     to_timestamp),
    (definition("from_timestamp", "From Timestamp", "ISO-8601 UTC timestamp from milliseconds",
                _D, _NUM, _DATE),
     from_timestamp),
)
