"""Database models for scrapers, routines and their executions."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from webscraper.core import json_utils
from webscraper.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scraper(Base):
    """Named list of instructions plus the data sources it may touch."""

    __tablename__ = "scrapers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    instructions = Column(JSON, nullable=False, default=list)
    data_sources = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    routines = relationship(
        "Routine", back_populates="scraper", cascade="all, delete-orphan"
    )

    def get_instructions(self) -> List[dict[str, Any]]:
        return list(json_utils.from_jsonable(self.instructions or []))

    def set_instructions(self, instructions: List[Any]) -> None:
        self.instructions = json_utils.to_jsonable(instructions)

    def get_data_sources(self) -> dict[str, str]:
        """Return the alias to table mapping of this scraper."""

        return {
            source["sourceAlias"]: source["tableName"]
            for source in (self.data_sources or [])
        }

    def set_data_sources(self, data_sources: List[Any]) -> None:
        self.data_sources = json_utils.to_jsonable(data_sources)


class Routine(Base):
    """Scheduled execution of a scraper over an optional iterator."""

    __tablename__ = "routines"

    id = Column(Integer, primary_key=True, index=True)
    scraper_id = Column(
        Integer, ForeignKey("scrapers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(String(64), nullable=False, default="active")
    description = Column(Text, nullable=True)
    iterator = Column(JSON, nullable=True)
    scheduler = Column(JSON, nullable=False)
    pause_after_number_of_failed_executions = Column(Integer, nullable=True)
    next_scheduled_execution_at = Column(BigInteger, nullable=True, index=True)
    last_execution_at = Column(BigInteger, nullable=True)
    previous_executions_count = Column(Integer, nullable=False, default=0)
    failed_executions_count = Column(Integer, nullable=False, default=0)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    scraper = relationship("Scraper", back_populates="routines")


class ScraperExecution(Base):
    """Traces recorded by one scraper run, one item per iteration."""

    __tablename__ = "scraper_executions"

    id = Column(Integer, primary_key=True, index=True)
    scraper_id = Column(
        Integer, ForeignKey("scrapers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    routine_id = Column(
        Integer, ForeignKey("routines.id", ondelete="SET NULL"), nullable=True, index=True
    )
    iterator = Column(JSON, nullable=True)
    iterations = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    def get_iterations(self) -> List[dict[str, Any]]:
        return list(json_utils.from_jsonable(self.iterations or []))

    def set_iterations(self, iterations: List[Any]) -> None:
        self.iterations = json_utils.to_jsonable(iterations)


__all__ = ["Routine", "Scraper", "ScraperExecution"]
