from __future__ import annotations

import logging

import pytest
from pydantic import TypeAdapter

from conftest import FakeDataBridge, FakePageDriver
from webscraper.schemas.execution import GetOperation
from webscraper.schemas.scraper import ScraperValue
from webscraper.scraping.special_strings import SpecialStringContext
from webscraper.scraping.values import ValueResolver


pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend():
    return "asyncio"


_value_adapter = TypeAdapter(ScraperValue)


def _resolver(driver: FakePageDriver, bridge: FakeDataBridge, operations: list | None = None) -> ValueResolver:
    context = SpecialStringContext(get_external_data=bridge.get, get_page_url=driver.get_page_url)
    return ValueResolver(
        driver=driver,
        data_bridge=bridge,
        special_strings=context,
        record_operation=operations.append if operations is not None else None,
        clock=lambda: 1234,
    )


async def test_static_values() -> None:
    resolver = _resolver(FakePageDriver(), FakeDataBridge())

    assert await resolver.resolve(_value_adapter.validate_python({"type": "literal", "value": "x"})) == "x"
    assert await resolver.resolve(_value_adapter.validate_python({"type": "null"})) is None
    assert await resolver.resolve(_value_adapter.validate_python({"type": "currentTimestamp"})) == "1234"


async def test_external_data_is_stringified_and_recorded() -> None:
    operations: list = []
    resolver = _resolver(FakePageDriver(), FakeDataBridge({"people.age": 42}), operations)

    value = await resolver.resolve(_value_adapter.validate_python({"type": "externalData", "dataKey": "people.age"}))

    assert value == "42"
    assert operations == [GetOperation(key="people.age", returned_value=42)]


async def test_external_data_default_value() -> None:
    operations: list = []
    resolver = _resolver(FakePageDriver(), FakeDataBridge(), operations)

    value = await resolver.resolve(
        _value_adapter.validate_python(
            {"type": "externalData", "dataKey": "people.age", "defaultValue": "unknown"}
        )
    )

    assert value == "unknown"
    assert operations[0].returned_value is None


async def test_external_data_without_default_warns(caplog) -> None:
    resolver = _resolver(FakePageDriver(), FakeDataBridge())

    with caplog.at_level(logging.WARNING):
        value = await resolver.resolve(
            _value_adapter.validate_python({"type": "externalData", "dataKey": "people.age"})
        )

    assert value is None
    assert "no default value provided" in caplog.text


async def test_external_data_errors_are_recorded() -> None:
    class BrokenBridge(FakeDataBridge):
        async def get(self, key):
            raise RuntimeError("connection lost")

    operations: list = []
    resolver = _resolver(FakePageDriver(), BrokenBridge(), operations)

    value = await resolver.resolve(
        _value_adapter.validate_python(
            {"type": "externalData", "dataKey": "people.age", "defaultValue": "0"}
        )
    )

    assert value == "0"
    assert operations[0].error == "connection lost"


async def test_element_values_use_substituted_selectors() -> None:
    driver = FakePageDriver(texts={"#row-7": "Ann"})
    resolver = _resolver(driver, FakeDataBridge({"people.id": 7}))

    value = await resolver.resolve(
        _value_adapter.validate_python(
            {
                "type": "elementTextContent",
                "selectors": [{"type": "query", "query": "#row-{{DataKey,people.id}}"}],
            }
        )
    )
    attribute = await resolver.resolve(
        _value_adapter.validate_python(
            {
                "type": "elementAttribute",
                "selectors": [{"type": "query", "query": "#row-7"}],
                "attributeName": "title",
            }
        )
    )

    assert value == "Ann"
    assert attribute == "Ann"


async def test_missing_element_resolves_to_none() -> None:
    resolver = _resolver(FakePageDriver(), FakeDataBridge())

    value = await resolver.resolve(
        _value_adapter.validate_python(
            {"type": "elementTextContent", "selectors": [{"type": "query", "query": ".missing"}]}
        )
    )

    assert value is None
