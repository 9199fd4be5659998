"""Create the tables holding scrapers, routines and executions."""
from __future__ import annotations

import logging

from sqlalchemy.engine import Engine

from webscraper.db import models  # noqa: F401
from webscraper.db.base import Base, get_engine


logger = logging.getLogger(__name__)


def init_db(engine: Engine | None = None) -> None:
    """Create missing tables on ``engine`` (the configured database by default)."""

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database ready: %s", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    init_db()
