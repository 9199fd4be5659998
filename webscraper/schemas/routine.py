"""Pydantic models for execution iterators, schedulers and routines."""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import Field, model_validator

from webscraper.schemas.common import CamelModel
from webscraper.schemas.scraper import DataSourceName
from webscraper.schemas.where import WhereSchema


Timestamp = Annotated[int, Field(ge=0, description="Milliseconds since the epoch")]


class ExecutionRange(CamelModel):
    start: int = Field(ge=1)
    end: int = Field(ge=1)
    step: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ExecutionRange":
        if self.start > self.end:
            raise ValueError("Start must be less than or equal to end")
        return self


class RangeIterator(CamelModel):
    type: Literal["range"] = "range"
    data_source_name: DataSourceName
    identifier: str = Field(
        min_length=1,
        description="Column the range applies to, usually the primary key.",
    )
    range: Union[ExecutionRange, Annotated[int, Field(ge=1)]]

    def resolved_range(self) -> ExecutionRange:
        """Return ``range`` with the bare-number shorthand expanded."""

        if isinstance(self.range, ExecutionRange):
            return self.range
        return ExecutionRange(start=1, end=self.range)


class EntireSetIterator(CamelModel):
    type: Literal["entire-set"] = "entire-set"
    data_source_name: DataSourceName


class FilteredSetIterator(CamelModel):
    type: Literal["filtered-set"] = "filtered-set"
    data_source_name: DataSourceName
    where: WhereSchema


ExecutionIterator = Annotated[
    Union[RangeIterator, EntireSetIterator, FilteredSetIterator],
    Field(discriminator="type"),
]


class IntervalScheduler(CamelModel):
    type: Literal["interval"] = "interval"
    interval: int = Field(ge=1, description="Milliseconds between executions")
    start_at: Timestamp
    end_at: Timestamp | None = None


Scheduler = IntervalScheduler


class RoutineStatus(str, Enum):
    ACTIVE = "active"
    EXECUTING = "executing"
    PAUSED = "paused"
    PAUSED_DUE_TO_MAX_NUMBER_OF_FAILED_EXECUTIONS = "pausedDueToMaxNumberOfFailedExecutions"


class UpsertRoutine(CamelModel):
    """Payload used to create or edit a routine."""

    scraper_id: int = Field(ge=1)
    iterator: ExecutionIterator | None = None
    description: str | None = None
    scheduler: Scheduler
    pause_after_number_of_failed_executions: int | None = Field(default=None, ge=1)


class Routine(UpsertRoutine):
    """Representation of a persisted routine."""

    id: int = Field(ge=1)
    scraper_name: str
    status: RoutineStatus
    next_scheduled_execution_at: Timestamp | None = None
    last_execution_at: Timestamp | None = None
    previous_executions_count: int = Field(default=0, ge=0)
    failed_executions_count: int = Field(default=0, ge=0)
    created_at: Timestamp
    updated_at: Timestamp


class PaginatedRoutines(CamelModel):
    data: list[Routine]
    page: int
    page_size: int
    has_more: bool


class ExecutionPlanPreviewRequest(CamelModel):
    iterator: ExecutionIterator
    data_sources: dict[str, str] = Field(
        default_factory=dict,
        description="Alias to table mapping; aliases default to table names.",
    )
    limit: int = Field(default=20, ge=1, le=500)


class IterationContextResponse(CamelModel):
    iteration: int
    data_source_name: str
    identifier: str
    value: Any = None
    row: dict[str, Any] | None = None


class ExecutionPlanPreviewResponse(CamelModel):
    sql: str | None = None
    iterations: list[IterationContextResponse]


__all__ = [
    "EntireSetIterator",
    "ExecutionIterator",
    "ExecutionPlanPreviewRequest",
    "ExecutionPlanPreviewResponse",
    "ExecutionRange",
    "FilteredSetIterator",
    "IntervalScheduler",
    "IterationContextResponse",
    "PaginatedRoutines",
    "RangeIterator",
    "Routine",
    "RoutineStatus",
    "Scheduler",
    "Timestamp",
    "UpsertRoutine",
]
