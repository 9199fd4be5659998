"""Scraper definition endpoints."""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from webscraper.db import models
from webscraper.db.base import get_db
from webscraper.schemas.execution import ScraperExecutionResponse
from webscraper.schemas.scraper import ScraperResponse, ScraperUpsertRequest
from webscraper.services.records import (
    apply_scraper_payload,
    serialise_execution,
    serialise_scraper,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scrapers", tags=["scrapers"])


def _get_scraper(db: Session, scraper_id: int) -> models.Scraper:
    scraper = db.query(models.Scraper).filter(models.Scraper.id == scraper_id).first()
    if not scraper:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scraper not found")
    return scraper


def _validate_payload(
    db: Session, payload: ScraperUpsertRequest, *, scraper_id: int | None = None
) -> None:
    aliases = [source.source_alias for source in payload.data_sources]
    if len(aliases) != len(set(aliases)):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Data source aliases must be unique",
        )

    query = db.query(models.Scraper).filter(models.Scraper.name == payload.name)
    if scraper_id is not None:
        query = query.filter(models.Scraper.id != scraper_id)
    if query.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Scraper name already in use"
        )


@router.post("", response_model=ScraperResponse, status_code=status.HTTP_201_CREATED)
async def create_scraper(
    payload: ScraperUpsertRequest,
    db: Session = Depends(get_db),
) -> ScraperResponse:
    """Create a new scraper."""

    _validate_payload(db, payload)
    scraper = models.Scraper()
    apply_scraper_payload(scraper, payload)
    db.add(scraper)
    db.commit()
    db.refresh(scraper)
    logger.info("Created scraper %s (%s)", scraper.id, scraper.name)
    return serialise_scraper(scraper)


@router.get("", response_model=List[ScraperResponse])
async def list_scrapers(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
) -> List[ScraperResponse]:
    """List scrapers ordered by identifier."""

    scrapers = db.query(models.Scraper).order_by(models.Scraper.id).offset(skip).limit(limit).all()
    return [serialise_scraper(scraper) for scraper in scrapers]


@router.get("/{scraper_id}", response_model=ScraperResponse)
async def get_scraper(scraper_id: int, db: Session = Depends(get_db)) -> ScraperResponse:
    return serialise_scraper(_get_scraper(db, scraper_id))


@router.put("/{scraper_id}", response_model=ScraperResponse)
async def update_scraper(
    scraper_id: int,
    payload: ScraperUpsertRequest,
    db: Session = Depends(get_db),
) -> ScraperResponse:
    """Replace the definition of an existing scraper."""

    scraper = _get_scraper(db, scraper_id)
    _validate_payload(db, payload, scraper_id=scraper_id)
    apply_scraper_payload(scraper, payload)
    db.commit()
    db.refresh(scraper)
    return serialise_scraper(scraper)


@router.delete("/{scraper_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scraper(scraper_id: int, db: Session = Depends(get_db)) -> Response:
    """Delete a scraper together with its routines."""

    scraper = _get_scraper(db, scraper_id)
    db.delete(scraper)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{scraper_id}/executions", response_model=List[ScraperExecutionResponse])
async def list_scraper_executions(
    scraper_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
) -> List[ScraperExecutionResponse]:
    """Return the most recent executions of a scraper, newest first."""

    _get_scraper(db, scraper_id)
    executions = (
        db.query(models.ScraperExecution)
        .filter(models.ScraperExecution.scraper_id == scraper_id)
        .order_by(models.ScraperExecution.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [serialise_execution(execution) for execution in executions]


__all__ = ["router"]
