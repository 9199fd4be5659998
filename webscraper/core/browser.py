"""Keyed Playwright browser sessions used to run scrapers."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from typing import TYPE_CHECKING, AsyncIterator, Dict

from webscraper.core.config import get_settings
from webscraper.services.page_driver import PlaywrightPageDriver

if TYPE_CHECKING:  # pragma: no cover - imported for type checkers only
    from playwright.async_api import Browser, BrowserContext, Playwright


logger = logging.getLogger(__name__)


@dataclass
class BrowserSession:
    """Playwright runtime, browser and context plus the driver built on them."""

    playwright: "Playwright"
    browser: "Browser"
    context: "BrowserContext"
    driver: PlaywrightPageDriver


class BrowserSessionNotFound(RuntimeError):
    """Raised when a caller attempts to reuse a non-existing session."""

    def __init__(self, session_key: str) -> None:
        super().__init__(f"No active browser session {session_key!r}")
        self.session_key = session_key


_SESSIONS: Dict[str, BrowserSession] = {}
_LOCKS: Dict[str, asyncio.Lock] = {}


def session_lock(session_key: str) -> asyncio.Lock:
    """Return the lock serialising runs that share ``session_key``."""

    lock = _LOCKS.get(session_key)
    if lock is None:
        lock = _LOCKS[session_key] = asyncio.Lock()
    return lock


async def open_browser_session(
    session_key: str,
    *,
    headless: bool | None = None,
) -> BrowserSession:
    """Launch a browser for ``session_key`` and store the session.

    Any previous session with the same key is shut down first. The session
    removes itself from the registry when the browser disconnects or its
    context is closed.
    """

    settings = get_settings()
    if headless is None:
        headless = settings.browser_headless

    await close_browser_session(session_key)

    playwright, browser = await _launch_browser(headless=headless)
    try:
        context = await browser.new_context()
    except Exception:
        logger.exception("Failed to create a browser context for %s", session_key)
        await _shutdown_browser(playwright, browser)
        raise

    driver = PlaywrightPageDriver(
        context, navigation_timeout_ms=settings.navigation_timeout_ms
    )
    session = BrowserSession(
        playwright=playwright, browser=browser, context=context, driver=driver
    )
    _SESSIONS[session_key] = session
    _register_session_cleanup(session_key, session)
    logger.info("Opened browser session %s (headless=%s)", session_key, headless)
    return session


def get_active_session(session_key: str) -> BrowserSession:
    """Return the active browser session stored under ``session_key``.

    Raises
    ------
    BrowserSessionNotFound
        If no session was opened for the key or it has been closed since.
    """

    try:
        return _SESSIONS[session_key]
    except KeyError as exc:
        raise BrowserSessionNotFound(session_key) from exc


async def close_browser_session(session_key: str) -> None:
    """Close and remove the session stored under ``session_key``, if any."""

    session = _SESSIONS.pop(session_key, None)
    if not session:
        return
    await _shutdown_browser(session.playwright, session.browser)


@asynccontextmanager
async def browser_session(
    session_key: str, *, headless: bool | None = None
) -> AsyncIterator[BrowserSession]:
    """Open a session for the duration of the block, one run per key at a time."""

    async with session_lock(session_key):
        session = await open_browser_session(session_key, headless=headless)
        try:
            yield session
        finally:
            await close_browser_session(session_key)


def _register_session_cleanup(session_key: str, session: BrowserSession) -> None:
    """Ensure ``session`` is cleaned up when the browser or context is closed."""

    cleanup_started = False

    async def _cleanup() -> None:
        logger.info("Cleaning up browser session %s", session_key)
        if _SESSIONS.get(session_key) is session:
            _SESSIONS.pop(session_key, None)
        await _shutdown_browser(session.playwright, session.browser)

    def _schedule_cleanup(*_: object) -> None:
        nonlocal cleanup_started
        if cleanup_started:
            return
        cleanup_started = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Unable to schedule cleanup for %s: no running loop", session_key)
            return
        loop.create_task(_cleanup())

    session.browser.on("disconnected", _schedule_cleanup)
    session.context.on("close", _schedule_cleanup)


async def _launch_browser(*, headless: bool = True) -> tuple["Playwright", "Browser"]:
    """Start Playwright and launch a Chromium browser instance."""

    from playwright.async_api import async_playwright

    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=headless)
    except Exception:
        await playwright.stop()
        raise
    return playwright, browser


async def _shutdown_browser(playwright: "Playwright", browser: "Browser") -> None:
    """Gracefully close the browser and stop Playwright."""

    with suppress(Exception):
        await browser.close()
    with suppress(Exception):
        await playwright.stop()


__all__ = [
    "BrowserSession",
    "BrowserSessionNotFound",
    "browser_session",
    "close_browser_session",
    "get_active_session",
    "open_browser_session",
    "session_lock",
]
