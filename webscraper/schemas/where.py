"""Validation models for the recursive where-condition filter tree."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import ConfigDict, Field, StrictBool

from webscraper.schemas.common import CamelModel


class SqliteConditionType(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN = "lessThan"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    LIKE = "like"
    NOT_LIKE = "notLike"
    I_LIKE = "iLike"
    NOT_I_LIKE = "notILike"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"
    BETWEEN = "between"
    NOT_BETWEEN = "notBetween"


ConditionValue = Union[StrictBool, int, float, datetime, str]

# plain or table-qualified SQL identifier; columns are emitted into SQL as given
ColumnName = Annotated[
    str,
    Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$"),
]


class BasicCondition(CamelModel):
    column: ColumnName
    condition: Literal[
        "equals",
        "notEquals",
        "greaterThan",
        "greaterThanOrEqual",
        "lessThan",
        "lessThanOrEqual",
        "like",
        "notLike",
        "iLike",
        "notILike",
    ]
    value: ConditionValue


class ArrayCondition(CamelModel):
    column: ColumnName
    condition: Literal["in", "notIn"]
    value: list[ConditionValue]


class RangeValue(CamelModel):
    from_: ConditionValue = Field(alias="from")
    to: ConditionValue


class RangeCondition(CamelModel):
    column: ColumnName
    condition: Literal["between", "notBetween"]
    value: RangeValue


class NullCondition(CamelModel):
    model_config = ConfigDict(extra="forbid")

    column: ColumnName
    condition: Literal["isNull", "isNotNull"]


WhereCondition = Annotated[
    Union[BasicCondition, ArrayCondition, RangeCondition, NullCondition],
    Field(discriminator="condition"),
]


class AndConditions(CamelModel):
    model_config = ConfigDict(extra="forbid")

    and_: list[WhereSchema] = Field(alias="and", min_length=1)
    negate: bool = False


class OrConditions(CamelModel):
    model_config = ConfigDict(extra="forbid")

    or_: list[WhereSchema] = Field(alias="or", min_length=1)
    negate: bool = False


WhereSchema = Union[WhereCondition, AndConditions, OrConditions]

AndConditions.model_rebuild()
OrConditions.model_rebuild()


def to_where_mapping(where: Any) -> dict[str, Any]:
    """Return the plain mapping form of a validated where schema.

    The SQL compiler works on plain mappings only; datetimes are kept as
    ``datetime`` objects so they render as quoted ISO strings.
    """

    if isinstance(where, CamelModel):
        return where.model_dump(by_alias=True)
    return where


__all__ = [
    "AndConditions",
    "ArrayCondition",
    "BasicCondition",
    "ColumnName",
    "ConditionValue",
    "NullCondition",
    "OrConditions",
    "RangeCondition",
    "RangeValue",
    "SqliteConditionType",
    "WhereCondition",
    "WhereSchema",
    "to_where_mapping",
]
