"""Tests for the routine endpoints."""
from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from conftest import FakePageDriver
from webscraper.db.base import get_data_store_engine
from webscraper.routers import routines as routines_router


SCHEDULER = {"type": "interval", "interval": 60_000, "startAt": 0}


@pytest.fixture()
def people_table(test_environment):
    engine = get_data_store_engine()
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT, title TEXT)"))
        connection.execute(
            text("INSERT INTO people (id, name) VALUES (1, 'Ann'), (2, 'Bob'), (3, 'Alice')")
        )
    return engine


@pytest.fixture()
def fake_driver(monkeypatch: pytest.MonkeyPatch) -> FakePageDriver:
    driver = FakePageDriver(texts={"h1": "Profile"})
    opened: list[str] = []

    @asynccontextmanager
    async def fake_open_page_driver(session_key: str):
        opened.append(session_key)
        yield driver

    monkeypatch.setattr(routines_router, "open_page_driver", fake_open_page_driver)
    driver.opened = opened
    return driver


def _create_scraper(client: TestClient) -> int:
    response = client.post(
        "/scrapers",
        json={
            "name": "profiles",
            "instructions": [
                {
                    "type": "pageAction",
                    "action": {"type": "navigate", "url": "https://example.com/people/{{DataKey,people.id}}"},
                },
                {
                    "type": "saveData",
                    "dataKey": "people.title",
                    "value": {"type": "elementTextContent", "selectors": [{"type": "query", "query": "h1"}]},
                },
            ],
            "dataSources": [{"sourceAlias": "people", "tableName": "people"}],
        },
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _create_routine(client: TestClient, scraper_id: int, **overrides) -> dict:
    payload = {"scraperId": scraper_id, "scheduler": SCHEDULER}
    payload.update(overrides)
    response = client.post("/routines", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_fetch_routine(api_client: TestClient) -> None:
    scraper_id = _create_scraper(api_client)

    routine = _create_routine(api_client, scraper_id, description="nightly")

    assert routine["status"] == "active"
    assert routine["scraperName"] == "profiles"
    assert routine["previousExecutionsCount"] == 0
    assert routine["nextScheduledExecutionAt"] > routine["createdAt"]
    assert api_client.get(f"/routines/{routine['id']}").json()["description"] == "nightly"


def test_routine_requires_existing_scraper(api_client: TestClient) -> None:
    response = api_client.post("/routines", json={"scraperId": 42, "scheduler": SCHEDULER})

    assert response.status_code == 404


def test_pagination(api_client: TestClient) -> None:
    scraper_id = _create_scraper(api_client)
    for _ in range(3):
        _create_routine(api_client, scraper_id)

    first = api_client.get("/routines", params={"page": 0, "pageSize": 2}).json()
    second = api_client.get("/routines", params={"page": 1, "pageSize": 2}).json()

    assert len(first["data"]) == 2
    assert first["hasMore"] is True
    assert first["pageSize"] == 2
    assert len(second["data"]) == 1
    assert second["hasMore"] is False


def test_pause_and_resume(api_client: TestClient) -> None:
    routine = _create_routine(api_client, _create_scraper(api_client))

    paused = api_client.post(f"/routines/{routine['id']}/pause").json()
    assert paused["status"] == "paused"
    assert paused["nextScheduledExecutionAt"] is None

    resumed = api_client.post(f"/routines/{routine['id']}/resume").json()
    assert resumed["status"] == "active"
    assert resumed["failedExecutionsCount"] == 0
    assert resumed["nextScheduledExecutionAt"] is not None


def test_update_and_delete(api_client: TestClient) -> None:
    scraper_id = _create_scraper(api_client)
    routine = _create_routine(api_client, scraper_id)

    updated = api_client.put(
        f"/routines/{routine['id']}",
        json={"scraperId": scraper_id, "scheduler": {**SCHEDULER, "endAt": 1}},
    )
    assert updated.status_code == 200
    assert updated.json()["nextScheduledExecutionAt"] is None

    assert api_client.delete(f"/routines/{routine['id']}").status_code == 204
    assert api_client.get(f"/routines/{routine['id']}").status_code == 404


def test_execute_routine_over_a_range(api_client: TestClient, people_table, fake_driver) -> None:
    scraper_id = _create_scraper(api_client)
    routine = _create_routine(
        api_client,
        scraper_id,
        iterator={"type": "range", "dataSourceName": "people", "identifier": "id", "range": {"start": 1, "end": 2}},
    )

    response = api_client.post(f"/routines/{routine['id']}/execute")

    assert response.status_code == 200, response.text
    execution = response.json()
    assert execution["routineId"] == routine["id"]
    assert [item["iteration"] for item in execution["iterations"]] == [1, 2]
    assert all(item["executionInfo"][-1]["type"] == "success" for item in execution["iterations"])
    assert fake_driver.opened == [f"routine-{routine['id']}"]
    assert [action[0] for action in fake_driver.actions] == ["navigate", "navigate"]
    assert fake_driver.urls[0] == "https://example.com/people/2"

    with people_table.connect() as connection:
        titles = connection.execute(text("SELECT id, title FROM people ORDER BY id")).all()
    assert [tuple(row) for row in titles] == [(1, "Profile"), (2, "Profile"), (3, None)]

    refreshed = api_client.get(f"/routines/{routine['id']}").json()
    assert refreshed["previousExecutionsCount"] == 1
    assert refreshed["lastExecutionAt"] is not None

    history = api_client.get(f"/scrapers/{scraper_id}/executions").json()
    assert [item["id"] for item in history] == [execution["id"]]


def test_execution_plan_preview(api_client: TestClient, people_table) -> None:
    response = api_client.post(
        "/routines/execution-plan/preview",
        json={
            "iterator": {
                "type": "filtered-set",
                "dataSourceName": "people",
                "where": {"column": "name", "condition": "like", "value": "A%"},
            },
            "limit": 5,
        },
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["sql"] == "name LIKE 'A%'"
    assert [item["value"] for item in body["iterations"]] == [1, 3]
    assert body["iterations"][1]["row"] == {"id": 3, "name": "Alice", "title": None}


def test_execution_plan_preview_validates_where_schema(api_client: TestClient) -> None:
    response = api_client.post(
        "/routines/execution-plan/preview",
        json={
            "iterator": {
                "type": "filtered-set",
                "dataSourceName": "people",
                "where": {"column": "id", "condition": "in", "value": 1},
            },
        },
    )

    assert response.status_code == 422


def test_execution_plan_preview_rejects_sql_in_column_names(api_client: TestClient, people_table) -> None:
    response = api_client.post(
        "/routines/execution-plan/preview",
        json={
            "iterator": {
                "type": "filtered-set",
                "dataSourceName": "people",
                "where": {"column": "1 OR name", "condition": "equals", "value": "nobody"},
            },
        },
    )

    assert response.status_code == 422


def test_execution_plan_preview_reports_unknown_column(api_client: TestClient, people_table) -> None:
    response = api_client.post(
        "/routines/execution-plan/preview",
        json={
            "iterator": {
                "type": "filtered-set",
                "dataSourceName": "people",
                "where": {"column": "missing", "condition": "equals", "value": "x"},
            },
        },
    )

    assert response.status_code == 400
    assert "no such column: missing" in response.json()["detail"]


def test_execute_routine_with_unknown_column(api_client: TestClient, people_table, fake_driver) -> None:
    routine = _create_routine(
        api_client,
        _create_scraper(api_client),
        iterator={
            "type": "filtered-set",
            "dataSourceName": "people",
            "where": {"column": "missing", "condition": "isNull"},
        },
    )

    response = api_client.post(f"/routines/{routine['id']}/execute")

    assert response.status_code == 400
    assert "no such column: missing" in response.json()["detail"]
    assert fake_driver.actions == []
    assert api_client.get(f"/routines/{routine['id']}").json()["status"] == "active"


def test_execute_routine_with_unknown_data_source(api_client: TestClient, fake_driver) -> None:
    routine = _create_routine(
        api_client,
        _create_scraper(api_client),
        iterator={"type": "entire-set", "dataSourceName": "ghosts"},
    )

    response = api_client.post(f"/routines/{routine['id']}/execute")

    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown data source: ghosts"
