"""Playwright implementation of the page operations used by scrapers."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Protocol, Sequence

from playwright.async_api import BrowserContext, ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from webscraper.schemas.scraper import (
    ClickAction,
    EvaluateAction,
    NavigateAction,
    ScrollToBottomAction,
    ScrollToElementAction,
    ScrollToTopAction,
    TypeAction,
    WaitAction,
)
from webscraper.scraping.values import ElementNotFound


logger = logging.getLogger(__name__)

EMPTY_PAGE_URL = "about:blank"
WAIT_FOR_NAVIGATION_TIMEOUT_MS = 20_000


class PageDriver(Protocol):
    """Operations the interpreter needs from a live browser session."""

    async def perform_page_action(
        self,
        action: Any,
        *,
        page_index: int = 0,
        value: str | None = None,
        arguments: Sequence[Any] = (),
    ) -> None:
        ...

    async def is_element_visible(self, selectors: list[Any], *, page_index: int = 0) -> bool:
        ...

    async def get_element_text(self, selectors: list[Any], *, page_index: int = 0) -> str | None:
        ...

    async def get_element_attribute(
        self, selectors: list[Any], attribute_name: str, *, page_index: int = 0
    ) -> str | None:
        ...

    async def get_page_url(self, page_index: int = 0) -> str | None:
        ...


# Runs inside the page. Selectors are applied in a fixed order: the first one
# produces the candidate list, the following ones filter it. Only visible
# elements are kept and more than one match is an error.
_LOCATE_ELEMENT_SCRIPT = """
(selectors) => {
  const compareText = (text, matcher) => {
    if (typeof matcher === "string") return text === matcher
    return new RegExp(matcher.source, matcher.flags).test(text ?? "")
  }
  const order = ["query", "tagName", "textContent", "attributes"]
  const sorted = [...selectors].sort((a, b) => order.indexOf(a.type) - order.indexOf(b.type))
  let elements = null
  for (const selector of sorted) {
    switch (selector.type) {
      case "query":
        elements = elements === null
          ? Array.from(document.querySelectorAll(selector.query))
          : elements.filter((el) => el.matches(selector.query))
        break
      case "tagName":
        elements = elements === null
          ? Array.from(document.querySelectorAll(selector.tagName))
          : elements.filter((el) => el.tagName.toLowerCase() === selector.tagName.toLowerCase())
        break
      case "textContent":
        elements = (elements ?? Array.from(document.querySelectorAll("*")))
          .filter((el) => compareText(el.textContent, selector.text))
        break
      case "attributes":
        elements = (elements ?? Array.from(document.querySelectorAll("*")))
          .filter((el) => Object.entries(selector.attributes)
            .every(([name, matcher]) => compareText(el.getAttribute(name), matcher)))
        break
    }
  }
  elements = (elements ?? []).filter((el) => el.checkVisibility())
  if (elements.length > 1) {
    throw new Error("Expected a single element to be found. Found multiple elements matching the conditions")
  }
  return elements.length ? elements[0] : null
}
"""

_SCROLL_TO_TOP_SCRIPT = "() => window.scrollTo({ top: 0, behavior: 'smooth' })"
_SCROLL_TO_BOTTOM_SCRIPT = (
    "() => window.scrollTo({ top: document.body.scrollHeight, behavior: 'smooth' })"
)


def _selectors_payload(selectors: list[Any]) -> list[dict[str, Any]]:
    return [selector.to_wire() for selector in selectors]


class PlaywrightPageDriver:
    """Drive one Playwright browser context.

    Page ``0`` is the first page of the context; pages with a higher index
    are opened lazily the first time an instruction targets them.
    """

    def __init__(
        self,
        context: BrowserContext,
        *,
        navigation_timeout_ms: int = 30_000,
    ) -> None:
        self.context = context
        self.navigation_timeout_ms = navigation_timeout_ms
        self._pages: dict[int, Page] = {}
        self._handlers: dict[str, Callable[..., Awaitable[None]]] = {
            "wait": self._wait,
            "navigate": self._navigate,
            "click": self._click,
            "type": self._type,
            "scrollToTop": self._scroll_to_top,
            "scrollToBottom": self._scroll_to_bottom,
            "scrollToElement": self._scroll_to_element,
            "evaluate": self._evaluate,
        }

    async def get_page(self, page_index: int = 0) -> Page:
        page = self._pages.get(page_index)
        if page is not None and not page.is_closed():
            return page

        existing = self.context.pages
        if page_index == 0 and existing and existing[0].url == EMPTY_PAGE_URL:
            page = existing[0]
        else:
            page = await self.context.new_page()
        page.set_default_navigation_timeout(self.navigation_timeout_ms)
        self._pages[page_index] = page
        logger.debug("Opened page %s", page_index)
        return page

    async def get_page_url(self, page_index: int = 0) -> str | None:
        page = self._pages.get(page_index)
        if page is None or page.is_closed():
            return None
        return page.url

    async def _locate(
        self, selectors: list[Any], page_index: int, *, required: bool = False
    ) -> ElementHandle | None:
        page = await self.get_page(page_index)
        handle = await page.evaluate_handle(
            _LOCATE_ELEMENT_SCRIPT, _selectors_payload(selectors)
        )
        element = handle.as_element()
        if element is None:
            await handle.dispose()
            if required:
                raise ElementNotFound(
                    "Expected a single element to be found. Found no element matching the condition"
                )
        return element

    async def is_element_visible(self, selectors: list[Any], *, page_index: int = 0) -> bool:
        return await self._locate(selectors, page_index) is not None

    async def get_element_text(self, selectors: list[Any], *, page_index: int = 0) -> str | None:
        element = await self._locate(selectors, page_index, required=True)
        return await element.text_content()

    async def get_element_attribute(
        self, selectors: list[Any], attribute_name: str, *, page_index: int = 0
    ) -> str | None:
        element = await self._locate(selectors, page_index, required=True)
        return await element.get_attribute(attribute_name)

    async def perform_page_action(
        self,
        action: Any,
        *,
        page_index: int = 0,
        value: str | None = None,
        arguments: Sequence[Any] = (),
    ) -> None:
        """Run ``action`` on the page at ``page_index``.

        ``value`` is the already resolved text for ``type`` actions and
        ``arguments`` the resolved arguments of ``evaluate`` actions.
        """

        handler = self._handlers.get(action.type)
        if handler is None:
            raise ValueError(f"Unsupported page action: {action.type}")
        page = await self.get_page(page_index)
        logger.info("Performing %s action on page %s", action.type, page_index)
        await handler(page, page_index, action, value=value, arguments=arguments)

    async def _wait_for_navigation(self, page: Page) -> None:
        try:
            await page.wait_for_load_state(
                "networkidle", timeout=WAIT_FOR_NAVIGATION_TIMEOUT_MS
            )
        except PlaywrightTimeoutError:
            logger.warning("Timed out while waiting for navigation")

    async def _wait(self, page: Page, page_index: int, action: WaitAction, **_: Any) -> None:
        await page.wait_for_timeout(action.duration)

    async def _navigate(
        self, page: Page, page_index: int, action: NavigateAction, **_: Any
    ) -> None:
        await page.goto(
            action.url, wait_until="networkidle", timeout=self.navigation_timeout_ms
        )

    async def _click(self, page: Page, page_index: int, action: ClickAction, **_: Any) -> None:
        element = await self._locate(action.selectors, page_index, required=True)
        await element.click()
        if action.wait_for_navigation:
            await self._wait_for_navigation(page)

    async def _type(
        self,
        page: Page,
        page_index: int,
        action: TypeAction,
        *,
        value: str | None = None,
        **_: Any,
    ) -> None:
        element = await self._locate(action.selectors, page_index, required=True)
        if action.clear_before_type:
            await element.fill("")
        if value:
            await element.type(value)
        if action.press_enter:
            await element.press("Enter")
        if action.wait_for_navigation:
            await self._wait_for_navigation(page)

    async def _scroll_to_top(
        self, page: Page, page_index: int, action: ScrollToTopAction, **_: Any
    ) -> None:
        await page.evaluate(_SCROLL_TO_TOP_SCRIPT)

    async def _scroll_to_bottom(
        self, page: Page, page_index: int, action: ScrollToBottomAction, **_: Any
    ) -> None:
        await page.evaluate(_SCROLL_TO_BOTTOM_SCRIPT)

    async def _scroll_to_element(
        self, page: Page, page_index: int, action: ScrollToElementAction, **_: Any
    ) -> None:
        element = await self._locate(action.selectors, page_index, required=True)
        await element.scroll_into_view_if_needed()

    async def _evaluate(
        self,
        page: Page,
        page_index: int,
        action: EvaluateAction,
        *,
        arguments: Sequence[Any] = (),
        **_: Any,
    ) -> None:
        await page.evaluate(f"(args) => ({action.code})(...args)", list(arguments))

    async def close(self) -> None:
        for page in self._pages.values():
            if not page.is_closed():
                await page.close()
        self._pages.clear()


__all__ = ["EMPTY_PAGE_URL", "PageDriver", "PlaywrightPageDriver"]
