"""Run scrapers for routines and keep the routine bookkeeping up to date."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from webscraper.core.config import Settings, get_settings
from webscraper.core.logging import execution_scope
from webscraper.db import models
from webscraper.schemas.execution import ScraperExecutionIteration
from webscraper.schemas.routine import RoutineStatus
from webscraper.schemas.scraper import ScraperResponse
from webscraper.scraping.iterator import ExecutionPlan, IterationContext
from webscraper.scraping.scheduler import now_ms
from webscraper.services.data_bridge import DataBridge
from webscraper.services.instruction_interpreter import (
    InstructionInterpreter,
    ScraperEnvironment,
)
from webscraper.services.page_driver import PageDriver
from webscraper.services.records import (
    parse_iterator,
    schedule_next_execution,
    serialise_scraper,
)


logger = logging.getLogger(__name__)


class RoutineConfigurationError(ValueError):
    """Raised when a routine cannot be executed as configured."""


async def execute_scraper(
    scraper: ScraperResponse,
    *,
    driver: PageDriver,
    data_bridge: DataBridge,
    iterator: Any = None,
    settings: Settings | None = None,
) -> list[ScraperExecutionIteration]:
    """Run ``scraper`` once per iteration context and return every trace.

    Without an iterator the scraper runs once, unbound to any data-source
    row. Iterations run one after another on the same page driver.
    """

    settings = settings or get_settings()
    contexts: list[IterationContext | None]
    if iterator is None:
        contexts = [None]
    else:
        contexts = [context async for context in ExecutionPlan(iterator, data_bridge)]
        if not contexts:
            logger.info("Iterator of scraper %s produced no rows", scraper.id)

    iterations: list[ScraperExecutionIteration] = []
    for number, context in enumerate(contexts, start=1):
        with execution_scope(scraper.id, number):
            if context is not None:
                logger.info(
                    "Running iteration %s for %s=%r",
                    number,
                    context.identifier,
                    context.value,
                )
            env = ScraperEnvironment(driver=driver, data_bridge=data_bridge.bind(context))
            interpreter = InstructionInterpreter(max_steps=settings.max_instruction_steps)
            trace = await interpreter.run(scraper.instructions, env)
            if not trace.succeeded:
                logger.warning("Iteration %s failed: %s", number, trace.error_message)

        iterations.append(
            ScraperExecutionIteration(
                iteration=number,
                execution_info=trace.entries,
                finished_at=datetime.now(timezone.utc),
            )
        )
    return iterations


def iteration_failed(iteration: ScraperExecutionIteration) -> bool:
    last = iteration.execution_info[-1] if iteration.execution_info else None
    return last is None or last.type != "success"


async def execute_routine(
    db: Session,
    routine: models.Routine,
    *,
    driver: PageDriver,
    data_bridge: DataBridge,
    now: int | None = None,
    settings: Settings | None = None,
) -> models.ScraperExecution:
    """Execute ``routine`` and persist the execution and its new state.

    The routine is marked ``executing`` while the scraper runs. A run with
    any failed iteration counts as failed; reaching
    ``pause_after_number_of_failed_executions`` consecutive failures pauses
    the routine. The next run is scheduled from the time the run ended.
    """

    if routine.scraper is None:
        raise RoutineConfigurationError(f"Routine {routine.id} has no scraper")

    started_at = now_ms() if now is None else now
    previous_status = routine.status
    routine.status = RoutineStatus.EXECUTING.value
    db.commit()

    try:
        scraper = serialise_scraper(routine.scraper)
        iterator = parse_iterator(routine.iterator)
        iterations = await execute_scraper(
            scraper,
            driver=driver,
            data_bridge=data_bridge,
            iterator=iterator,
            settings=settings,
        )
    except Exception:
        routine.status = previous_status
        db.commit()
        raise

    execution = models.ScraperExecution(
        scraper_id=scraper.id,
        routine_id=routine.id,
        iterator=routine.iterator,
    )
    execution.set_iterations(iterations)
    db.add(execution)

    failed = any(iteration_failed(iteration) for iteration in iterations)
    routine.previous_executions_count = (routine.previous_executions_count or 0) + 1
    # manual runs of a paused routine leave it paused
    routine.status = (
        RoutineStatus.ACTIVE.value
        if previous_status in (None, RoutineStatus.EXECUTING.value)
        else previous_status
    )
    if failed:
        routine.failed_executions_count = (routine.failed_executions_count or 0) + 1
        threshold = routine.pause_after_number_of_failed_executions
        if threshold is not None and routine.failed_executions_count >= threshold:
            logger.warning(
                "Pausing routine %s after %s failed executions",
                routine.id,
                routine.failed_executions_count,
            )
            routine.status = RoutineStatus.PAUSED_DUE_TO_MAX_NUMBER_OF_FAILED_EXECUTIONS.value
    else:
        routine.failed_executions_count = 0

    finished_at = max(now_ms(), started_at) if now is None else started_at
    routine.last_execution_at = started_at
    routine.updated_at = finished_at
    schedule_next_execution(routine, finished_at)

    db.commit()
    db.refresh(execution)
    return execution


def find_due_routines(db: Session, now: int | None = None) -> list[models.Routine]:
    """Return active routines whose next run is at or before ``now``."""

    now = now_ms() if now is None else now
    return (
        db.query(models.Routine)
        .filter(
            models.Routine.status == RoutineStatus.ACTIVE.value,
            models.Routine.next_scheduled_execution_at.is_not(None),
            models.Routine.next_scheduled_execution_at <= now,
        )
        .order_by(models.Routine.next_scheduled_execution_at)
        .all()
    )


__all__ = [
    "RoutineConfigurationError",
    "execute_routine",
    "execute_scraper",
    "find_due_routines",
    "iteration_failed",
]
