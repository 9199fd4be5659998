"""Database session and base model utilities."""
from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from webscraper.core.config import get_settings


Base = declarative_base()
_SessionLocal: sessionmaker | None = None
_engine: Engine | None = None
_data_store_engine: Engine | None = None


def _create_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if "sqlite" in url else {}
    return create_engine(url, connect_args=connect_args, future=True)


def get_engine() -> Engine:
    """Return the engine holding scrapers, routines and executions."""

    global _engine
    if _engine is None:
        _engine = _create_engine(get_settings().database_url)
    return _engine


def get_data_store_engine() -> Engine:
    """Return the engine of the user data store scrapers read from and write to."""

    global _data_store_engine
    if _data_store_engine is None:
        settings = get_settings()
        if settings.data_store_url == settings.database_url:
            _data_store_engine = get_engine()
        else:
            _data_store_engine = _create_engine(settings.data_store_url)
    return _data_store_engine


def get_sessionmaker() -> sessionmaker:
    """Return a sessionmaker bound to the engine."""

    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
    return _SessionLocal


def get_db() -> Generator:
    """Provide a transactional scope around a series of operations."""

    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


def reset_database_state() -> None:
    """Reset cached engines/session factory. Useful for testing."""

    global _engine, _SessionLocal, _data_store_engine
    _engine = None
    _SessionLocal = None
    _data_store_engine = None


__all__ = [
    "Base",
    "get_data_store_engine",
    "get_db",
    "get_engine",
    "get_sessionmaker",
    "reset_database_state",
]
