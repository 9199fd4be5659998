"""Conversions between database rows and API models."""
from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter

from webscraper.core import json_utils
from webscraper.db import models
from webscraper.schemas.execution import ScraperExecutionIteration, ScraperExecutionResponse
from webscraper.schemas.routine import ExecutionIterator, Routine, UpsertRoutine
from webscraper.schemas.scraper import ScraperResponse, ScraperUpsertRequest
from webscraper.scraping.scheduler import calculate_next_scheduled_execution_at, now_ms


_IteratorAdapter: TypeAdapter[Any] = TypeAdapter(ExecutionIterator)


def serialise_scraper(scraper: models.Scraper) -> ScraperResponse:
    return ScraperResponse.model_validate(
        {
            "id": scraper.id,
            "name": scraper.name,
            "instructions": scraper.get_instructions(),
            "dataSources": list(scraper.data_sources or []),
        }
    )


def apply_scraper_payload(scraper: models.Scraper, payload: ScraperUpsertRequest) -> None:
    scraper.name = payload.name
    scraper.set_instructions(payload.instructions)
    scraper.set_data_sources(payload.data_sources)


def parse_iterator(raw: Any) -> Any:
    """Validate a stored iterator, restoring tagged dates first."""

    if raw is None:
        return None
    return _IteratorAdapter.validate_python(json_utils.from_jsonable(raw))


def serialise_routine(routine: models.Routine) -> Routine:
    return Routine.model_validate(
        {
            "id": routine.id,
            "scraperId": routine.scraper_id,
            "scraperName": routine.scraper.name if routine.scraper else "",
            "iterator": parse_iterator(routine.iterator),
            "status": routine.status,
            "description": routine.description,
            "scheduler": routine.scheduler,
            "pauseAfterNumberOfFailedExecutions": routine.pause_after_number_of_failed_executions,
            "nextScheduledExecutionAt": routine.next_scheduled_execution_at,
            "lastExecutionAt": routine.last_execution_at,
            "previousExecutionsCount": routine.previous_executions_count or 0,
            "failedExecutionsCount": routine.failed_executions_count or 0,
            "createdAt": routine.created_at,
            "updatedAt": routine.updated_at,
        }
    )


def apply_routine_payload(
    routine: models.Routine, payload: UpsertRoutine, *, now: int | None = None
) -> None:
    """Copy ``payload`` onto ``routine`` and recompute its next run."""

    now = now_ms() if now is None else now
    routine.scraper_id = payload.scraper_id
    routine.description = payload.description
    routine.iterator = (
        json_utils.to_jsonable(payload.iterator) if payload.iterator is not None else None
    )
    routine.scheduler = payload.scheduler.model_dump(by_alias=True, mode="json")
    routine.pause_after_number_of_failed_executions = (
        payload.pause_after_number_of_failed_executions
    )
    if routine.status is None:
        routine.status = "active"
    if routine.created_at is None:
        routine.created_at = now
    routine.updated_at = now
    schedule_next_execution(routine, now)


class _RoutineView:
    """Expose a row's status and scheduler the way the scheduler expects."""

    def __init__(self, routine: models.Routine) -> None:
        self.status = routine.status
        self.scheduler = routine.scheduler


def schedule_next_execution(routine: models.Routine, now: int) -> None:
    routine.next_scheduled_execution_at = calculate_next_scheduled_execution_at(
        _RoutineView(routine), now
    )


def serialise_execution(execution: models.ScraperExecution) -> ScraperExecutionResponse:
    return ScraperExecutionResponse(
        id=execution.id,
        scraper_id=execution.scraper_id,
        routine_id=execution.routine_id,
        iterator=parse_iterator(execution.iterator),
        created_at=execution.created_at,
        iterations=[
            ScraperExecutionIteration.model_validate(item)
            for item in execution.get_iterations()
        ],
    )


__all__ = [
    "apply_routine_payload",
    "apply_scraper_payload",
    "parse_iterator",
    "schedule_next_execution",
    "serialise_execution",
    "serialise_routine",
    "serialise_scraper",
]
