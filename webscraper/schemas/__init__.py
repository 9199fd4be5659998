"""Pydantic schemas for scrapers, routines and execution traces."""

from .routine import ExecutionIterator, Routine, RoutineStatus, UpsertRoutine
from .scraper import ScraperInstruction, ScraperUpsertRequest, ScraperValue
from .where import SqliteConditionType, WhereSchema

__all__ = [
    "ExecutionIterator",
    "Routine",
    "RoutineStatus",
    "ScraperInstruction",
    "ScraperUpsertRequest",
    "ScraperValue",
    "SqliteConditionType",
    "UpsertRoutine",
    "WhereSchema",
]
