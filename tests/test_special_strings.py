"""Tests for special string expansion."""
from __future__ import annotations

import logging
import re

import pytest

from webscraper.scraping.special_strings import (
    SpecialStringContext,
    SpecialStringError,
    get_url_property,
    replace_special_strings,
)


pytestmark = pytest.mark.anyio


@pytest.fixture
def anyio_backend():
    return "asyncio"


class Recorder:
    def __init__(self, values: dict | None = None, urls: dict | None = None) -> None:
        self.values = values or {"dataSource1.column1": "mockedValue", "dataSource2.column2": 123}
        self.urls = urls or {}
        self.keys: list[str] = []
        self.pages: list[int] = []

    async def get_external_data(self, key: str):
        self.keys.append(key)
        return self.values.get(key)

    async def get_page_url(self, page_index: int):
        self.pages.append(page_index)
        return self.urls.get(page_index)

    def context(self) -> SpecialStringContext:
        return SpecialStringContext(
            get_external_data=self.get_external_data,
            get_page_url=self.get_page_url,
        )


async def test_text_without_tokens_is_unchanged() -> None:
    recorder = Recorder()

    assert await replace_special_strings("a normal string", recorder.context()) == "a normal string"
    assert recorder.keys == []


async def test_random_string_lengths() -> None:
    context = Recorder().context()

    default = await replace_special_strings("{{RandomString}}", context)
    sized = await replace_special_strings("id: {{RandomString,8}}", context)
    floored = await replace_special_strings("{{RandomString,0}}", context)

    assert re.fullmatch(r"[a-zA-Z0-9]{16}", default)
    assert re.fullmatch(r"id: [a-zA-Z0-9]{8}", sized)
    assert re.fullmatch(r"[a-zA-Z0-9]", floored)


async def test_random_string_rejects_non_numeric_length() -> None:
    with pytest.raises(SpecialStringError):
        await replace_special_strings("{{RandomString,abc}}", Recorder().context())


async def test_data_key_tokens() -> None:
    recorder = Recorder()

    result = await replace_special_strings(
        "data1: {{DataKey,dataSource1.column1}}, data2: {{DataKey, dataSource2.column2 }}",
        recorder.context(),
    )

    assert result == "data1: mockedValue, data2: 123"
    assert recorder.keys == ["dataSource1.column1", "dataSource2.column2"]


async def test_repeated_tokens_are_resolved_independently() -> None:
    recorder = Recorder()

    result = await replace_special_strings(
        "{{DataKey,dataSource1.column1}}-{{DataKey,dataSource1.column1}}",
        recorder.context(),
    )

    assert result == "mockedValue-mockedValue"
    assert recorder.keys == ["dataSource1.column1", "dataSource1.column1"]


async def test_missing_data_is_replaced_with_empty_string() -> None:
    result = await replace_special_strings(
        "Value is {{DataKey,dataSource1.columnUnknown}}", Recorder().context()
    )

    assert result == "Value is "


async def test_invalid_data_key() -> None:
    with pytest.raises(SpecialStringError, match="Data key special string must have at least one argument"):
        await replace_special_strings("invalid: {{DataKey,invalidKey}}", Recorder().context())


async def test_unknown_type() -> None:
    with pytest.raises(SpecialStringError, match="Unknown special string type: UnknownType"):
        await replace_special_strings("unknown: {{UnknownType,arg}}", Recorder().context())


async def test_current_url_properties() -> None:
    recorder = Recorder(urls={0: "https://user:pw@Example.com:8443/a/b?x=1#top", 2: "http://example.org"})
    context = recorder.context()

    assert await replace_special_strings("{{CurrentUrl,hostname}}", context) == "example.com"
    assert await replace_special_strings("{{CurrentUrl,host}}", context) == "example.com:8443"
    assert await replace_special_strings("{{CurrentUrl,pathname}}{{CurrentUrl,search}}", context) == "/a/b?x=1"
    assert await replace_special_strings("{{CurrentUrl,origin,2}}", context) == "http://example.org"
    assert await replace_special_strings("{{CurrentUrl,pathname,2}}", context) == "/"
    assert recorder.pages[-1] == 2


async def test_current_url_invalid_page_index_falls_back_to_first_page(caplog) -> None:
    recorder = Recorder(urls={0: "https://example.com/path"})

    with caplog.at_level(logging.WARNING):
        result = await replace_special_strings("{{CurrentUrl,pathname,abc}}", recorder.context())

    assert result == "/path"
    assert recorder.pages == [0]
    assert "Invalid page index" in caplog.text


async def test_current_url_missing_page_yields_empty_string(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        result = await replace_special_strings("[{{CurrentUrl,href,3}}]", Recorder().context())

    assert result == "[]"
    assert "No page found" in caplog.text


async def test_current_url_unsupported_property() -> None:
    with pytest.raises(SpecialStringError, match="Unsupported URL property: searchParams"):
        await replace_special_strings("{{CurrentUrl,searchParams}}", Recorder().context())


def test_url_properties_follow_browser_url_interface() -> None:
    url = "https://example.com/items?page=2#list"

    assert get_url_property(url, "protocol") == "https:"
    assert get_url_property(url, "port") == ""
    assert get_url_property(url, "hash") == "#list"
    assert get_url_property(url, "href") == url
