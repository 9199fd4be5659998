"""Compile where-condition trees into SQL boolean expressions.

The compiler works on plain mappings so it can be used (and tested) without
the pydantic models in :mod:`webscraper.schemas.where`; validated models are
converted with :func:`webscraper.schemas.where.to_where_mapping` first.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any


class WhereSchemaError(ValueError):
    """Raised when a where schema cannot be compiled into SQL."""


_COMPARISON_OPERATORS: dict[str, str] = {
    "equals": "=",
    "notEquals": "!=",
    "greaterThan": ">",
    "greaterThanOrEqual": ">=",
    "lessThan": "<",
    "lessThanOrEqual": "<=",
    "like": "LIKE",
    "notLike": "NOT LIKE",
}

_CASE_INSENSITIVE_OPERATORS: dict[str, str] = {
    "iLike": "LIKE",
    "notILike": "NOT LIKE",
}

_ARRAY_OPERATORS: dict[str, str] = {"in": "IN", "notIn": "NOT IN"}
_RANGE_OPERATORS: dict[str, str] = {"between": "BETWEEN", "notBetween": "NOT BETWEEN"}
_NULL_OPERATORS: dict[str, str] = {"isNull": "IS NULL", "isNotNull": "IS NOT NULL"}


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def format_value(value: Any) -> str:
    """Render a single condition value as a SQL literal."""

    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, datetime):
        return f"'{_format_datetime(value)}'"
    raise WhereSchemaError(f"Unsupported value type: {type(value).__name__}")


def _condition_name(condition: Any) -> str:
    # str-based enums compare equal to their value but format differently
    return getattr(condition, "value", condition)


def _compile_condition(where: Mapping[str, Any]) -> str:
    column = where.get("column")
    if not isinstance(column, str):
        raise WhereSchemaError("Invalid where schema")

    condition = _condition_name(where["condition"])
    value = where.get("value")

    if condition in _COMPARISON_OPERATORS:
        return f"{column} {_COMPARISON_OPERATORS[condition]} {format_value(value)}"

    if condition in _CASE_INSENSITIVE_OPERATORS:
        operator = _CASE_INSENSITIVE_OPERATORS[condition]
        return f"LOWER({column}) {operator} LOWER({format_value(value)})"

    if condition in _ARRAY_OPERATORS:
        operator = _ARRAY_OPERATORS[condition]
        if not isinstance(value, (list, tuple)):
            raise WhereSchemaError(f"{operator} condition requires array value")
        values = ", ".join(format_value(item) for item in value)
        return f"{column} {operator} ({values})"

    if condition in _NULL_OPERATORS:
        return f"{column} {_NULL_OPERATORS[condition]}"

    if condition in _RANGE_OPERATORS:
        operator = _RANGE_OPERATORS[condition]
        if not isinstance(value, Mapping) or "from" not in value or "to" not in value:
            raise WhereSchemaError(
                f"{operator} condition requires range value with from and to properties"
            )
        return (
            f"{column} {operator} {format_value(value['from'])}"
            f" AND {format_value(value['to'])}"
        )

    raise WhereSchemaError(f"Unsupported condition: {condition}")


def _compile_group(
    children: Any, *, joiner: str, empty: str, negate: bool
) -> str:
    if not isinstance(children, (list, tuple)):
        raise WhereSchemaError("Invalid where schema")

    if not children:
        result = empty
    elif len(children) == 1:
        result = where_schema_to_sql(children[0])
    else:
        result = "(" + joiner.join(where_schema_to_sql(child) for child in children) + ")"

    if not negate:
        return result
    if len(children) > 1:
        return f"NOT {result}"
    return f"NOT ({result})"


def where_schema_to_sql(where: Mapping[str, Any]) -> str:
    """Return the SQL boolean expression equivalent to ``where``.

    Leaves render as ``<column> <operator> <value>``. ``and``/``or`` groups
    join their children, parenthesising only when there is more than one
    child; an empty ``and`` is always true (``1=1``) and an empty ``or`` is
    always false (``1=0``). ``negate`` wraps the group in ``NOT (...)``,
    empty groups included, so a negated empty ``and`` is ``NOT (1=1)`` and
    matches nothing.

    Raises
    ------
    WhereSchemaError
        If the schema is malformed or a value cannot be rendered. Partially
        compiled SQL is never returned.
    """

    if not isinstance(where, Mapping):
        raise WhereSchemaError("Invalid where schema")

    if "condition" in where:
        return _compile_condition(where)

    negate = bool(where.get("negate", False))
    if "and" in where:
        return _compile_group(where["and"], joiner=" AND ", empty="1=1", negate=negate)
    if "or" in where:
        return _compile_group(where["or"], joiner=" OR ", empty="1=0", negate=negate)

    raise WhereSchemaError("Invalid where schema")


__all__ = ["WhereSchemaError", "format_value", "where_schema_to_sql"]
