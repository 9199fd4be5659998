"""Turn an execution iterator definition into a sequence of iteration contexts."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator

from webscraper.schemas.routine import (
    EntireSetIterator,
    FilteredSetIterator,
    IterationContextResponse,
    RangeIterator,
)
from webscraper.schemas.where import to_where_mapping
from webscraper.scraping.where import where_schema_to_sql

if TYPE_CHECKING:  # pragma: no cover - imported for annotations only
    from webscraper.services.data_bridge import DataBridge


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationContext:
    """The data-source row (or range value) a single scraper run is bound to."""

    iteration: int
    data_source_name: str
    identifier: str
    value: Any
    row: dict[str, Any] | None = None

    def to_response(self) -> IterationContextResponse:
        return IterationContextResponse(
            iteration=self.iteration,
            data_source_name=self.data_source_name,
            identifier=self.identifier,
            value=self.value,
            row=self.row,
        )


class ExecutionPlan:
    """Lazy, restartable sequence of :class:`IterationContext` objects.

    Every ``async for`` starts from scratch; set iterators read their rows
    once when iteration starts, so rows added or removed while the plan is
    being consumed do not affect the current pass.
    """

    def __init__(self, iterator: Any, data_bridge: "DataBridge") -> None:
        self.iterator = iterator
        self.data_bridge = data_bridge

    @property
    def where_sql(self) -> str | None:
        if isinstance(self.iterator, FilteredSetIterator):
            return where_schema_to_sql(to_where_mapping(self.iterator.where))
        return None

    def __aiter__(self) -> AsyncIterator[IterationContext]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[IterationContext]:
        if isinstance(self.iterator, RangeIterator):
            for context in self._iterate_range(self.iterator):
                yield context
            return

        if isinstance(self.iterator, (EntireSetIterator, FilteredSetIterator)):
            source = self.iterator.data_source_name
            rows = await self.data_bridge.fetch_rows(source, self.where_sql)
            identifier = self.data_bridge.identifier_column
            logger.debug("Iterating %s rows of %s", len(rows), source)
            for index, row in enumerate(rows, start=1):
                yield IterationContext(
                    iteration=index,
                    data_source_name=source,
                    identifier=identifier,
                    value=row.get(identifier),
                    row=dict(row),
                )
            return

        raise TypeError(f"Unsupported execution iterator: {type(self.iterator).__name__}")

    def _iterate_range(self, iterator: RangeIterator):
        bounds = iterator.resolved_range()
        step = bounds.step or 1
        for index, value in enumerate(range(bounds.start, bounds.end + 1, step), start=1):
            yield IterationContext(
                iteration=index,
                data_source_name=iterator.data_source_name,
                identifier=iterator.identifier,
                value=value,
            )

    async def preview(self, limit: int = 20) -> list[IterationContext]:
        """Return at most ``limit`` contexts from the start of the plan."""

        contexts: list[IterationContext] = []
        if limit <= 0:
            return contexts
        async for context in self:
            contexts.append(context)
            if len(contexts) >= limit:
                break
        return contexts


__all__ = ["ExecutionPlan", "IterationContext"]
