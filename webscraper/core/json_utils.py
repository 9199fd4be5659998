"""Utilities for working with JSON payloads."""
from __future__ import annotations

import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel


DATE_TAG = "$date"


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def to_jsonable(value: Any) -> Any:
    """Return ``value`` as plain JSON data, tagging datetimes.

    JSON has no native date type, so every :class:`datetime` is stored as
    ``{"$date": "<iso-8601>"}`` which :func:`from_jsonable` turns back into an
    aware datetime. Pydantic models are dumped by alias so the stored shape
    matches the wire format.
    """

    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump(by_alias=True))
    if isinstance(value, datetime):
        return {DATE_TAG: _format_datetime(value)}
    if isinstance(value, date):
        return {DATE_TAG: _format_datetime(datetime(value.year, value.month, value.day))}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def _decode_object(data: dict[str, Any]) -> Any:
    if len(data) == 1 and DATE_TAG in data and isinstance(data[DATE_TAG], str):
        return datetime.fromisoformat(data[DATE_TAG].replace("Z", "+00:00"))
    return data


def from_jsonable(value: Any) -> Any:
    """Reverse :func:`to_jsonable` on already decoded JSON data."""

    if isinstance(value, dict):
        decoded = {key: from_jsonable(item) for key, item in value.items()}
        return _decode_object(decoded)
    if isinstance(value, list):
        return [from_jsonable(item) for item in value]
    return value


def dumps(value: Any, *, indent: int | None = None) -> str:
    """Serialise ``value`` to JSON text using :func:`to_jsonable`."""

    return json.dumps(to_jsonable(value), indent=indent)


def loads(data: str, /) -> Any:
    """Parse JSON text produced by :func:`dumps`, restoring tagged values."""

    return json.loads(data, object_hook=_decode_object)


__all__ = ["DATE_TAG", "dumps", "from_jsonable", "loads", "to_jsonable"]
