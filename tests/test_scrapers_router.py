"""Tests for the scraper endpoints."""
from __future__ import annotations

from fastapi.testclient import TestClient


def _payload(name: str = "products", **overrides) -> dict:
    payload = {
        "name": name,
        "instructions": [
            {"type": "marker", "name": "start"},
            {"type": "pageAction", "action": {"type": "navigate", "url": "https://example.com"}},
            {
                "type": "condition",
                "if": {"type": "isVisible", "selectors": [{"type": "query", "query": ".next"}]},
                "then": [{"type": "jump", "markerName": "start"}],
            },
        ],
        "dataSources": [{"sourceAlias": "items", "tableName": "shop_items"}],
    }
    payload.update(overrides)
    return payload


def test_scraper_crud(api_client: TestClient) -> None:
    created = api_client.post("/scrapers", json=_payload())
    assert created.status_code == 201, created.text
    body = created.json()
    scraper_id = body["id"]
    assert body["dataSources"] == [{"sourceAlias": "items", "tableName": "shop_items"}]
    assert body["instructions"][2]["then"] == [{"type": "jump", "markerName": "start"}]

    fetched = api_client.get(f"/scrapers/{scraper_id}")
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "products"

    updated = api_client.put(f"/scrapers/{scraper_id}", json=_payload("products-v2"))
    assert updated.status_code == 200
    assert updated.json()["name"] == "products-v2"

    listing = api_client.get("/scrapers")
    assert [item["id"] for item in listing.json()] == [scraper_id]

    deleted = api_client.delete(f"/scrapers/{scraper_id}")
    assert deleted.status_code == 204
    assert api_client.get(f"/scrapers/{scraper_id}").status_code == 404


def test_duplicate_names_conflict(api_client: TestClient) -> None:
    assert api_client.post("/scrapers", json=_payload()).status_code == 201
    other = api_client.post("/scrapers", json=_payload("other"))

    assert api_client.post("/scrapers", json=_payload()).status_code == 409
    renamed = api_client.put(f"/scrapers/{other.json()['id']}", json=_payload())
    assert renamed.status_code == 409


def test_unresolved_jumps_are_rejected(api_client: TestClient) -> None:
    payload = _payload(instructions=[{"type": "jump", "markerName": "nowhere"}])

    response = api_client.post("/scrapers", json=payload)

    assert response.status_code == 422
    assert "Jump instructions reference unknown markers: nowhere" in response.text


def test_duplicate_aliases_are_rejected(api_client: TestClient) -> None:
    payload = _payload(
        dataSources=[
            {"sourceAlias": "items", "tableName": "a"},
            {"sourceAlias": "items", "tableName": "b"},
        ]
    )

    response = api_client.post("/scrapers", json=payload)

    assert response.status_code == 422
    assert response.json()["detail"] == "Data source aliases must be unique"


def test_invalid_instruction_payload(api_client: TestClient) -> None:
    payload = _payload(instructions=[{"type": "pageAction", "action": {"type": "teleport"}}])

    assert api_client.post("/scrapers", json=payload).status_code == 422


def test_executions_of_unknown_scraper(api_client: TestClient) -> None:
    assert api_client.get("/scrapers/99/executions").status_code == 404
