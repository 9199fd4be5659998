"""Resolve :data:`~webscraper.schemas.scraper.ScraperValue` variants to strings."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from webscraper.schemas.execution import GetOperation
from webscraper.schemas.scraper import (
    AttributesSelector,
    CurrentTimestampValue,
    ElementAttributeValue,
    ElementTextContentValue,
    ExternalDataValue,
    LiteralValue,
    NullValue,
    QuerySelector,
    TextContentSelector,
)
from webscraper.scraping.scheduler import now_ms
from webscraper.scraping.special_strings import (
    SpecialStringContext,
    replace_special_strings,
)

if TYPE_CHECKING:  # pragma: no cover - imported for annotations only
    from webscraper.services.data_bridge import DataBridge
    from webscraper.services.page_driver import PageDriver


logger = logging.getLogger(__name__)

OperationRecorder = Callable[[Any], None]


class ElementNotFound(LookupError):
    """Raised by page drivers when no element matches a selector list."""


async def substitute_selectors(
    selectors: list[Any], context: SpecialStringContext
) -> list[Any]:
    """Return copies of ``selectors`` with special strings expanded.

    Only plain strings are substituted; regular expressions are kept as-is.
    """

    resolved: list[Any] = []
    for selector in selectors:
        if isinstance(selector, QuerySelector):
            query = await replace_special_strings(selector.query, context)
            selector = selector.model_copy(update={"query": query})
        elif isinstance(selector, TextContentSelector) and isinstance(selector.text, str):
            text = await replace_special_strings(selector.text, context)
            selector = selector.model_copy(update={"text": text})
        elif isinstance(selector, AttributesSelector):
            attributes = {}
            for name, matcher in selector.attributes.items():
                if isinstance(matcher, str):
                    matcher = await replace_special_strings(matcher, context)
                attributes[name] = matcher
            selector = selector.model_copy(update={"attributes": attributes})
        resolved.append(selector)
    return resolved


class ValueResolver:
    """Turn scraper values into ``str | None`` using the page and data store."""

    def __init__(
        self,
        *,
        driver: "PageDriver",
        data_bridge: "DataBridge",
        special_strings: SpecialStringContext,
        record_operation: OperationRecorder | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.driver = driver
        self.data_bridge = data_bridge
        self.special_strings = special_strings
        self.record_operation = record_operation
        self.clock = clock

    async def resolve(self, value: Any) -> str | None:
        if isinstance(value, LiteralValue):
            return value.value
        if isinstance(value, NullValue):
            return None
        if isinstance(value, CurrentTimestampValue):
            return str(self.clock())
        if isinstance(value, ExternalDataValue):
            return await self._resolve_external_data(value)
        if isinstance(value, (ElementTextContentValue, ElementAttributeValue)):
            return await self._resolve_element_value(value)
        raise TypeError(f"Unsupported scraper value: {type(value).__name__}")

    async def _resolve_external_data(self, value: ExternalDataValue) -> str | None:
        operation = GetOperation(key=value.data_key)
        returned: Any = None
        try:
            returned = await self.data_bridge.get(value.data_key)
        except Exception as exc:
            logger.exception("Failed to read external data %s", value.data_key)
            operation.error = str(exc)
        operation.returned_value = returned
        if self.record_operation is not None:
            self.record_operation(operation)

        if returned is not None:
            return str(returned)
        if value.default_value is not None:
            return value.default_value
        logger.warning(
            "External data value not found and no default value provided. Key: %s",
            value.data_key,
        )
        return None

    async def _resolve_element_value(
        self, value: ElementTextContentValue | ElementAttributeValue
    ) -> str | None:
        selectors = await substitute_selectors(value.selectors, self.special_strings)
        page_index = value.page_index or 0
        try:
            if isinstance(value, ElementAttributeValue):
                return await self.driver.get_element_attribute(
                    selectors, value.attribute_name, page_index=page_index
                )
            return await self.driver.get_element_text(selectors, page_index=page_index)
        except ElementNotFound:
            logger.warning(
                "Cannot resolve %s; element not found on page %s",
                value.type,
                page_index,
            )
            return None


__all__ = ["ElementNotFound", "ValueResolver", "substitute_selectors"]
