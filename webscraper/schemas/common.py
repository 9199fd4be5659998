"""Shared building blocks for the wire schemas."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Return the JSON-compatible wire representation (camelCase keys)."""

        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


__all__ = ["CamelModel"]
