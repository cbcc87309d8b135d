import datetime

import pytest
from sqlalchemy import column

import dynarest
from dynarest.coercion import (
    CONTAINS,
    EQ,
    GT,
    GTE,
    IN,
    LT,
    LTE,
    NE,
    STARTSWITH,
    Condition,
    coerce_value,
    condition_clause,
    parse_condition,
)
from dynarest.context import User
from dynarest.entity import BINARY, BOOLEAN, DATE, NUMBER, OBJECTID, Attribute
from dynarest.errors import InvalidArgumentError, InvalidFormatError, ValidationError

USER = User(id="c" * 24, username="carol")
NAME = Attribute("name")
AGE = Attribute("age", NUMBER)


def test_number_literal_is_coerced():
    assert coerce_value("42", NUMBER) == 42
    assert coerce_value("-1.5", NUMBER) == -1.5


@pytest.mark.parametrize("value", ["abc", "", "nan", "inf", "1_000", " 42 ", "42\n"])
def test_invalid_numbers_are_rejected(value):
    with pytest.raises(InvalidFormatError):
        coerce_value(value, NUMBER)


def test_boolean_literals():
    assert coerce_value("TRUE", BOOLEAN) is True
    assert coerce_value("false", BOOLEAN) is False
    with pytest.raises(InvalidFormatError) as exc_info:
        coerce_value("yes", BOOLEAN)
    assert "Boolean arguments can only be 'true' or 'false'" in exc_info.value.message


def test_invalid_format_is_a_validation_error():
    with pytest.raises(ValidationError):
        coerce_value("yes", BOOLEAN)


def test_date_literals():
    assert coerce_value("2014-01-31", DATE) == datetime.datetime(2014, 1, 31)
    assert coerce_value("2014-01-31T12:30:58.123Z", DATE) == datetime.datetime(2014, 1, 31, 12, 30, 58, 123000)
    with pytest.raises(InvalidFormatError):
        coerce_value("2014-1-31", DATE)
    with pytest.raises(InvalidFormatError):
        coerce_value("2014-13-31", DATE)


def test_object_id_literals():
    assert coerce_value("5F1E2D3C4B5A69788796A5B4", OBJECTID) == "5f1e2d3c4b5a69788796a5b4"
    with pytest.raises(InvalidFormatError):
        coerce_value("5f1e2d", OBJECTID)
    with pytest.raises(InvalidFormatError):
        coerce_value("a" * 24 + "\n", OBJECTID)


def test_pattern_operators():
    assert parse_condition(NAME, "~>jo", USER) == Condition("name", STARTSWITH, "jo")
    assert parse_condition(NAME, "~hn", USER) == Condition("name", CONTAINS, "hn")


def test_pattern_on_non_string_attribute():
    with pytest.raises(InvalidArgumentError):
        parse_condition(AGE, "~4", USER)


def test_comparison_operators():
    assert parse_condition(AGE, ">=21", USER) == Condition("age", GTE, 21)
    assert parse_condition(AGE, ">21", USER) == Condition("age", GT, 21)
    assert parse_condition(AGE, "<=21", USER) == Condition("age", LTE, 21)
    assert parse_condition(AGE, "<21", USER) == Condition("age", LT, 21)
    with pytest.raises(InvalidFormatError):
        parse_condition(AGE, ">abc", USER)


def test_null_operators():
    assert parse_condition(NAME, "isnull", USER) == Condition("name", EQ, None)
    assert parse_condition(NAME, "IsNull", USER) == Condition("name", EQ, None)
    assert parse_condition(NAME, "!isnull", USER) == Condition("name", NE, None)
    assert parse_condition(AGE, "!ISNULL", USER) == Condition("age", NE, None)


def test_negation_and_equality():
    assert parse_condition(NAME, "!Boston", USER) == Condition("name", NE, "Boston")
    assert parse_condition(NAME, "Boston", USER) == Condition("name", EQ, "Boston")
    assert parse_condition(AGE, "42", USER) == Condition("age", EQ, 42)


def test_in_list_members_are_coerced():
    assert parse_condition(AGE, "[21,22]", USER) == Condition("age", IN, [21, 22])
    with pytest.raises(InvalidFormatError):
        parse_condition(AGE, "[21,abc]", USER)


def test_in_list_members_as_strings(monkeypatch):
    monkeypatch.setattr(dynarest.Dynarest, "COERCE_IN_LIST", False)
    assert parse_condition(AGE, "[21,22]", USER) == Condition("age", IN, ["21", "22"])


def test_current_username_substitution():
    assert parse_condition(NAME, "CURRENT_USERNAME", USER) == Condition("name", EQ, "carol")
    assert parse_condition(NAME, "!CURRENT_USERNAME", USER) == Condition("name", NE, "CURRENT_USERNAME")


def test_json_attributes_only_support_null_checks():
    photo = Attribute("photo", BINARY)
    assert parse_condition(photo, "isnull", USER) == Condition("photo", EQ, None)
    assert parse_condition(photo, "!isnull", USER) == Condition("photo", NE, None)
    with pytest.raises(InvalidArgumentError):
        parse_condition(photo, "a.txt", USER)


def test_condition_clauses():
    city = column("city")
    assert "IS NULL" in str(condition_clause(city, Condition("city", EQ, None)))
    assert "IS NOT NULL" in str(condition_clause(city, Condition("city", NE, None)))
    negation = str(condition_clause(city, Condition("city", NE, "Boston")))
    assert "!=" in negation and "IS NULL" in negation
    assert "IN" in str(condition_clause(city, Condition("city", IN, ["a", "b"])))
    assert "LIKE" in str(condition_clause(city, Condition("city", STARTSWITH, "bo")))
    assert "LIKE" in str(condition_clause(city, Condition("city", CONTAINS, "os")))
