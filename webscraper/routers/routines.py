"""Routine scheduling and execution endpoints."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from webscraper.core.browser import browser_session
from webscraper.db import models
from webscraper.db.base import get_db
from webscraper.schemas.execution import ScraperExecutionResponse
from webscraper.schemas.routine import (
    ExecutionPlanPreviewRequest,
    ExecutionPlanPreviewResponse,
    PaginatedRoutines,
    Routine,
    RoutineStatus,
    UpsertRoutine,
)
from webscraper.scraping.iterator import ExecutionPlan
from webscraper.scraping.scheduler import now_ms
from webscraper.scraping.where import WhereSchemaError
from webscraper.services.data_bridge import UnknownDataSource, create_data_bridge
from webscraper.services.page_driver import PageDriver
from webscraper.services.records import (
    apply_routine_payload,
    schedule_next_execution,
    serialise_execution,
    serialise_routine,
)
from webscraper.services.routine_runner import execute_routine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routines", tags=["routines"])


@asynccontextmanager
async def open_page_driver(session_key: str) -> AsyncIterator[PageDriver]:
    """Yield the page driver of a fresh browser session for ``session_key``."""

    async with browser_session(session_key) as session:
        yield session.driver


def _get_routine(db: Session, routine_id: int) -> models.Routine:
    routine = db.query(models.Routine).filter(models.Routine.id == routine_id).first()
    if not routine:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Routine not found")
    return routine


def _bad_request(exc: Exception) -> HTTPException:
    if isinstance(exc, SQLAlchemyError):
        # the driver message names the failing column or table
        detail = str(getattr(exc, "orig", None) or exc)
    else:
        detail = str(exc)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _ensure_scraper(db: Session, scraper_id: int) -> models.Scraper:
    scraper = db.query(models.Scraper).filter(models.Scraper.id == scraper_id).first()
    if not scraper:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scraper not found")
    return scraper


@router.get("", response_model=PaginatedRoutines)
async def list_routines(
    page: int = Query(0, ge=0),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    db: Session = Depends(get_db),
) -> PaginatedRoutines:
    """List routines, most recently updated first."""

    routines = (
        db.query(models.Routine)
        .order_by(models.Routine.updated_at.desc(), models.Routine.id.desc())
        .offset(page * page_size)
        .limit(page_size + 1)
        .all()
    )
    return PaginatedRoutines(
        data=[serialise_routine(routine) for routine in routines[:page_size]],
        page=page,
        page_size=page_size,
        has_more=len(routines) > page_size,
    )


@router.post(
    "/execution-plan/preview",
    response_model=ExecutionPlanPreviewResponse,
)
async def preview_execution_plan(
    payload: ExecutionPlanPreviewRequest,
) -> ExecutionPlanPreviewResponse:
    """Show the SQL filter and the first iterations an iterator would produce."""

    data_sources = dict(payload.data_sources)
    data_sources.setdefault(
        payload.iterator.data_source_name, payload.iterator.data_source_name
    )
    plan = ExecutionPlan(payload.iterator, create_data_bridge(data_sources))
    try:
        sql = plan.where_sql
        contexts = await plan.preview(payload.limit)
    except (WhereSchemaError, UnknownDataSource, SQLAlchemyError) as exc:
        raise _bad_request(exc) from exc
    return ExecutionPlanPreviewResponse(
        sql=sql, iterations=[context.to_response() for context in contexts]
    )


@router.get("/{routine_id}", response_model=Routine)
async def get_routine(routine_id: int, db: Session = Depends(get_db)) -> Routine:
    return serialise_routine(_get_routine(db, routine_id))


@router.post("", response_model=Routine, status_code=status.HTTP_201_CREATED)
async def create_routine(
    payload: UpsertRoutine,
    db: Session = Depends(get_db),
) -> Routine:
    """Create a routine and schedule its first run."""

    _ensure_scraper(db, payload.scraper_id)
    routine = models.Routine(status=RoutineStatus.ACTIVE.value)
    apply_routine_payload(routine, payload)
    db.add(routine)
    db.commit()
    db.refresh(routine)
    logger.info(
        "Created routine %s; next run at %s", routine.id, routine.next_scheduled_execution_at
    )
    return serialise_routine(routine)


@router.put("/{routine_id}", response_model=Routine)
async def update_routine(
    routine_id: int,
    payload: UpsertRoutine,
    db: Session = Depends(get_db),
) -> Routine:
    routine = _get_routine(db, routine_id)
    _ensure_scraper(db, payload.scraper_id)
    apply_routine_payload(routine, payload)
    db.commit()
    db.refresh(routine)
    return serialise_routine(routine)


@router.delete("/{routine_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_routine(routine_id: int, db: Session = Depends(get_db)) -> Response:
    routine = _get_routine(db, routine_id)
    db.delete(routine)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{routine_id}/pause", response_model=Routine)
async def pause_routine(routine_id: int, db: Session = Depends(get_db)) -> Routine:
    """Stop scheduling a routine until it is resumed."""

    routine = _get_routine(db, routine_id)
    if routine.status == RoutineStatus.EXECUTING.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Routine is currently executing"
        )
    now = now_ms()
    routine.status = RoutineStatus.PAUSED.value
    routine.updated_at = now
    schedule_next_execution(routine, now)
    db.commit()
    db.refresh(routine)
    return serialise_routine(routine)


@router.post("/{routine_id}/resume", response_model=Routine)
async def resume_routine(routine_id: int, db: Session = Depends(get_db)) -> Routine:
    """Reactivate a paused routine and reset its failure counter."""

    routine = _get_routine(db, routine_id)
    if routine.status == RoutineStatus.EXECUTING.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Routine is currently executing"
        )
    now = now_ms()
    routine.status = RoutineStatus.ACTIVE.value
    routine.failed_executions_count = 0
    routine.updated_at = now
    schedule_next_execution(routine, now)
    db.commit()
    db.refresh(routine)
    return serialise_routine(routine)


@router.post("/{routine_id}/execute", response_model=ScraperExecutionResponse)
async def execute_routine_now(
    routine_id: int,
    db: Session = Depends(get_db),
) -> ScraperExecutionResponse:
    """Run a routine immediately, outside of its schedule."""

    routine = _get_routine(db, routine_id)
    if routine.status == RoutineStatus.EXECUTING.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Routine is currently executing"
        )

    data_bridge = create_data_bridge(routine.scraper.get_data_sources())
    async with open_page_driver(f"routine-{routine.id}") as driver:
        try:
            execution = await execute_routine(
                db, routine, driver=driver, data_bridge=data_bridge
            )
        except (WhereSchemaError, UnknownDataSource, SQLAlchemyError) as exc:
            logger.warning("Routine %s could not iterate its data source: %s", routine.id, exc)
            raise _bad_request(exc) from exc
    return serialise_execution(execution)


__all__ = ["open_page_driver", "router"]
