"""Shared pytest fixtures."""
from __future__ import annotations

import importlib
from pathlib import Path
from typing import Any, Generator, Sequence

import pytest
from fastapi.testclient import TestClient

from webscraper.core.config import reload_settings
from webscraper.db.base import get_sessionmaker, reset_database_state
from webscraper.db.init_db import init_db
from webscraper.services.data_bridge import split_data_key


@pytest.fixture()
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Prepare environment variables and initialise the database."""

    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("DATA_STORE_URL", f"sqlite:///{tmp_path / 'data-store.db'}")
    monkeypatch.setenv("BROWSER_HEADLESS", "true")
    monkeypatch.delenv("MAX_INSTRUCTION_STEPS", raising=False)

    reload_settings()
    reset_database_state()
    init_db()
    return db_path


@pytest.fixture()
def api_client(test_environment: Path) -> Generator[TestClient, None, None]:
    """Return a TestClient instance with a fresh application state."""

    import webscraper.main

    importlib.reload(webscraper.main)

    client = TestClient(webscraper.main.app)
    try:
        yield client
    finally:
        client.close()


@pytest.fixture()
def db_session(test_environment: Path):
    """Provide a SQLAlchemy session bound to the test database."""

    session_factory = get_sessionmaker()
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class FakePageDriver:
    """In-memory page driver recording every call it receives."""

    def __init__(
        self,
        *,
        visible: bool = True,
        texts: dict[str, str | None] | None = None,
        url: str | None = "https://example.com/",
    ) -> None:
        self.visible = visible
        self.texts = texts or {}
        self.urls: dict[int, str | None] = {0: url}
        self.actions: list[tuple[str, int, Any]] = []
        self.failing_actions: set[str] = set()
        self.on_action = None

    async def perform_page_action(
        self,
        action: Any,
        *,
        page_index: int = 0,
        value: str | None = None,
        arguments: Sequence[Any] = (),
    ) -> None:
        self.actions.append((action.type, page_index, value if value is not None else list(arguments)))
        if self.on_action is not None:
            self.on_action(action)
        if action.type in self.failing_actions:
            raise RuntimeError(f"{action.type} failed")
        if action.type == "navigate":
            self.urls[page_index] = action.url

    async def is_element_visible(self, selectors: list[Any], *, page_index: int = 0) -> bool:
        return self.visible

    async def get_element_text(self, selectors: list[Any], *, page_index: int = 0) -> str | None:
        from webscraper.scraping.values import ElementNotFound

        key = selectors[0].query if selectors[0].type == "query" else selectors[0].type
        if key not in self.texts:
            raise ElementNotFound(key)
        return self.texts[key]

    async def get_element_attribute(
        self, selectors: list[Any], attribute_name: str, *, page_index: int = 0
    ) -> str | None:
        return await self.get_element_text(selectors, page_index=page_index)

    async def get_page_url(self, page_index: int = 0) -> str | None:
        return self.urls.get(page_index)


class FakeDataBridge:
    """Dictionary backed data bridge."""

    identifier_column = "id"

    def __init__(self, values: dict[str, Any] | None = None, rows: dict[str, list[dict]] | None = None) -> None:
        self.values = dict(values or {})
        self.rows = rows or {}
        self.calls: list[tuple] = []
        self.fail_writes = False
        self.context = None

    def bind(self, context: Any) -> "FakeDataBridge":
        bound = FakeDataBridge(self.values, self.rows)
        bound.calls = self.calls
        bound.fail_writes = self.fail_writes
        bound.context = context
        return bound

    async def get(self, key: str) -> Any:
        self.calls.append(("get", key))
        return self.values.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.calls.append(("set", key, value))
        if self.fail_writes:
            raise RuntimeError("store is read-only")
        split_data_key(key)
        self.values[key] = value

    async def set_many(self, data_source_name: str, items: Sequence[tuple[str, Any]]) -> None:
        self.calls.append(("set_many", data_source_name, list(items)))
        if self.fail_writes:
            raise RuntimeError("store is read-only")
        for column, value in items:
            self.values[f"{data_source_name}.{column}"] = value

    async def delete(self, data_source_name: str) -> None:
        self.calls.append(("delete", data_source_name))
        if self.fail_writes:
            raise RuntimeError("store is read-only")
        for key in [key for key in self.values if key.startswith(f"{data_source_name}.")]:
            del self.values[key]

    async def fetch_rows(self, data_source_name: str, where_sql: str | None = None) -> list[dict]:
        self.calls.append(("fetch_rows", data_source_name, where_sql))
        return [dict(row) for row in self.rows.get(data_source_name, [])]


@pytest.fixture()
def page_driver() -> FakePageDriver:
    return FakePageDriver()


@pytest.fixture()
def data_bridge() -> FakeDataBridge:
    return FakeDataBridge()
