"""
Query string filters.

The value of an attribute parameter is a small operator grammar:

    ?name=~>jo            begins with "jo" (case insensitive)
    ?name=~hn             contains "hn" (case insensitive)
    ?age=>=21             also >, <= and <
    ?city=!isnull         also isnull
    ?city=!Boston         not equal
    ?age=[21,22]          in list
    ?name=John            equal

The literals are coerced to the datatype of the attribute before they reach
the database, invalid literals raise InvalidFormatError.
"""
from __future__ import annotations

import datetime
import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import or_

from .config import get_config
from .entity import BOOLEAN, DATE, NUMBER, OBJECTID, STRING, Attribute
from .errors import InvalidArgumentError, InvalidFormatError
from .util import is_object_id

EQ = "eq"
NE = "ne"
GT = "gt"
GTE = "gte"
LT = "lt"
LTE = "lte"
IN = "in"
STARTSWITH = "istartswith"
CONTAINS = "icontains"

CURRENT_USERNAME = "CURRENT_USERNAME"

# longest prefix first
_COMPARISONS = ((">=", GTE), (">", GT), ("<=", LTE), ("<", LT))


@dataclass(frozen=True)
class Condition:
    path: str
    operator: str
    value: Any


def parse_date(value: str) -> datetime.datetime:
    """
    Accepts "2014-01-31" (UTC midnight) and "2014-01-31T12:30:58.123Z"
    :return: naive UTC datetime
    """
    if len(value) == 10:
        try:
            return datetime.datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            raise InvalidFormatError(f"Invalid date: {value}")
    if len(value) == 24:
        try:
            parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidFormatError(f"Invalid date: {value}")
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return parsed
    raise InvalidFormatError(f"Invalid string length for date parsing: {value}")


def coerce_value(value: str, datatype: str) -> Any:
    if datatype == OBJECTID:
        if not is_object_id(value):
            raise InvalidFormatError(f"Invalid ObjectId: {value}")
        return value.lower()
    if datatype == BOOLEAN:
        lowered = value.lower()
        if lowered not in ("true", "false"):
            raise InvalidFormatError("Boolean arguments can only be 'true' or 'false'")
        return lowered == "true"
    if datatype == NUMBER:
        # float() also accepts "1_000" and padded literals
        if "_" in value or value != value.strip():
            raise InvalidFormatError(f"Invalid number: {value}")
        try:
            result = float(value)
        except ValueError:
            raise InvalidFormatError(f"Invalid number: {value}")
        if not math.isfinite(result):
            raise InvalidFormatError(f"Invalid number: {value}")
        return result
    if datatype == DATE:
        return parse_date(value)
    return value


def parse_condition(attribute: Attribute, value: str, user) -> Condition:
    """
    :param attribute: the filtered attribute
    :param value: raw query string value
    :param user: the requesting user, substituted for CURRENT_USERNAME
    :return: Condition
    """
    path, datatype = attribute.code, attribute.datatype
    value = str(value)
    lowered = value.lower()

    if attribute.is_json:
        if lowered == "isnull":
            return Condition(path, EQ, None)
        if lowered == "!isnull":
            return Condition(path, NE, None)
        raise InvalidArgumentError(f"Only isnull and !isnull filters are supported on {datatype} attribute {path}")

    if value.startswith("~"):
        if datatype != STRING:
            raise InvalidArgumentError(f"Pattern filters are only supported on string attributes: {path}")
        if value.startswith("~>"):
            return Condition(path, STARTSWITH, value[2:])
        return Condition(path, CONTAINS, value[1:])

    for prefix, operator in _COMPARISONS:
        if value.startswith(prefix):
            return Condition(path, operator, coerce_value(value[len(prefix) :], datatype))

    if lowered == "!isnull":
        return Condition(path, NE, None)
    if value.startswith("!"):
        return Condition(path, NE, coerce_value(value[1:], datatype))
    if value.startswith("[") and value.endswith("]") and len(value) > 1:
        members = value[1:-1].split(",")
        if get_config("COERCE_IN_LIST"):
            members = [coerce_value(member, datatype) for member in members]
        return Condition(path, IN, members)
    if lowered == "isnull":
        return Condition(path, EQ, None)

    result = coerce_value(value, datatype)
    if result == CURRENT_USERNAME:
        result = user.username
    return Condition(path, EQ, result)


def condition_clause(column, condition: Condition):
    """
    Compile a condition on `column`
    """
    operator, value = condition.operator, condition.value
    if operator == EQ:
        return column.is_(None) if value is None else column == value
    if operator == NE:
        if value is None:
            return column.isnot(None)
        return or_(column != value, column.is_(None))
    if operator == GT:
        return column > value
    if operator == GTE:
        return column >= value
    if operator == LT:
        return column < value
    if operator == LTE:
        return column <= value
    if operator == IN:
        return column.in_(value)
    if operator == STARTSWITH:
        return column.istartswith(value, autoescape=True)
    if operator == CONTAINS:
        return column.icontains(value, autoescape=True)
    raise InvalidArgumentError(f"Unknown filter operator: {operator}")
