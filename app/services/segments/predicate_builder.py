"""
Predicate Builder

Compiles one rule condition (field, operator, value) into a predicate over a
customer record. All validation happens here, at build time, so a malformed
condition is rejected before any customer is scanned.

Operators:
- number: gt, gte, lt, lte, eq
- date: before, after (strict), between (inclusive, "start,end"),
  daysAgo (strictly earlier than now - N days)
- string: contains, startsWith, endsWith, equals (case-sensitive)

A customer whose attribute is null never matches.
"""

import math
import operator as op
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple, Union

from app.exceptions import (
    InvalidFieldTypeError,
    InvalidValueError,
    UnsupportedFieldError,
    UnsupportedOperatorError,
    ValidationError,
)
from app.services.segments.fields import (
    ALL_OPERATORS,
    FieldDefinition,
    FieldType,
    get_field,
)
from app.services.segments.rule_tree import Condition, parse_rule_tree


Predicate = Callable[[Any], bool]

_NUMERIC_COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    "gt": op.gt,
    "gte": op.ge,
    "lt": op.lt,
    "lte": op.le,
    "eq": op.eq,
}


def build_condition(condition: Union[Condition, dict], now: Optional[datetime] = None) -> Predicate:
    """
    Build a predicate for a single condition.

    Args:
        condition: Condition value or its dict form
        now: Reference time for relative date operators (defaults to current UTC time)

    Returns:
        Pure function customer -> bool

    Raises:
        UnsupportedFieldError, UnsupportedOperatorError,
        InvalidFieldTypeError, InvalidValueError
    """
    if isinstance(condition, dict):
        condition = parse_rule_tree(condition)
    if not isinstance(condition, Condition):
        raise ValidationError("Expected a single condition, got a rule group")

    definition = get_field(condition.field)
    if definition is None:
        raise UnsupportedFieldError(condition.field)

    operator = condition.operator
    if operator not in ALL_OPERATORS:
        raise UnsupportedOperatorError(condition.field, operator)
    if operator not in definition.operators:
        raise InvalidFieldTypeError(condition.field, operator, definition.data_type.value)

    builder = _BUILDERS[definition.data_type]
    return builder(definition, operator, condition.value, now)


# =========================================================================
# NUMERIC
# =========================================================================


def _coerce_number(field: str, operator: str, value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise InvalidValueError(field, operator, "expected a number")
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except OverflowError:
            raise InvalidValueError(field, operator, "number out of range") from None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise InvalidValueError(field, operator, f"{value!r} is not a number") from None
    else:
        raise InvalidValueError(field, operator, "expected a number")

    if not math.isfinite(number):
        raise InvalidValueError(field, operator, "number must be finite")
    return number


def build_numeric_condition(
    definition: FieldDefinition, operator: str, value: Any, now: Optional[datetime] = None
) -> Predicate:
    threshold = _coerce_number(definition.name, operator, value)
    compare = _NUMERIC_COMPARATORS[operator]
    accessor = definition.accessor

    def predicate(customer: Any) -> bool:
        actual = accessor(customer)
        if actual is None:
            return False
        return compare(float(actual), threshold)

    return predicate


# =========================================================================
# DATE
# =========================================================================


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps are stored as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string, date or datetime into an aware UTC datetime."""
    if isinstance(raw, datetime):
        return _as_utc(raw)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def _parse_range(field: str, value: Any) -> Tuple[datetime, datetime]:
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        raise InvalidValueError(field, "between", "expected 'start,end'")

    if len(parts) != 2:
        raise InvalidValueError(field, "between", f"expected exactly two dates, got {len(parts)}")

    start, end = (parse_timestamp(p) for p in parts)
    if start is None or end is None:
        raise InvalidValueError(field, "between", "both endpoints must be valid dates")
    return start, end


def _parse_day_count(field: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidValueError(field, "daysAgo", "expected a whole number of days")
    if isinstance(value, int):
        days = value
    elif isinstance(value, float) and value.is_integer():
        days = int(value)
    elif isinstance(value, str) and value.strip().isdecimal():
        try:
            days = int(value.strip())
        except ValueError:
            raise InvalidValueError(field, "daysAgo", "day count out of range") from None
    else:
        raise InvalidValueError(field, "daysAgo", "expected a whole number of days")

    if days < 0:
        raise InvalidValueError(field, "daysAgo", "day count cannot be negative")
    return days


def build_date_condition(
    definition: FieldDefinition, operator: str, value: Any, now: Optional[datetime] = None
) -> Predicate:
    field = definition.name
    accessor = definition.accessor

    if operator == "between":
        start, end = _parse_range(field, value)
        test = lambda moment: start <= moment <= end
    elif operator == "daysAgo":
        days = _parse_day_count(field, value)
        reference = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        # Fixed when the predicate is built, not per customer
        try:
            cutoff = reference - timedelta(days=days)
        except OverflowError:
            raise InvalidValueError(field, "daysAgo", "day count out of range") from None
        test = lambda moment: moment < cutoff
    else:
        boundary = parse_timestamp(value)
        if boundary is None:
            raise InvalidValueError(field, operator, f"{value!r} is not a valid date")
        if operator == "before":
            test = lambda moment: moment < boundary
        else:
            test = lambda moment: moment > boundary

    def predicate(customer: Any) -> bool:
        moment = parse_timestamp(accessor(customer))
        if moment is None:
            return False
        return test(moment)

    return predicate


# =========================================================================
# STRING
# =========================================================================


_STRING_TESTS: Dict[str, Callable[[str, str], bool]] = {
    "contains": lambda actual, expected: expected in actual,
    "startsWith": lambda actual, expected: actual.startswith(expected),
    "endsWith": lambda actual, expected: actual.endswith(expected),
    "equals": lambda actual, expected: actual == expected,
}


def build_string_condition(
    definition: FieldDefinition, operator: str, value: Any, now: Optional[datetime] = None
) -> Predicate:
    if definition.data_type is not FieldType.STRING:
        raise InvalidFieldTypeError(definition.name, operator, definition.data_type.value)
    if not isinstance(value, str):
        raise InvalidValueError(definition.name, operator, "expected text")

    test = _STRING_TESTS[operator]
    accessor = definition.accessor

    def predicate(customer: Any) -> bool:
        actual = accessor(customer)
        if not isinstance(actual, str):
            return False
        return test(actual, value)

    return predicate


_BUILDERS = {
    FieldType.NUMBER: build_numeric_condition,
    FieldType.DATE: build_date_condition,
    FieldType.STRING: build_string_condition,
}
