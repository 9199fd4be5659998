"""Logging utilities and middleware for structured output."""
from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Iterator

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from webscraper.core.config import get_settings


_request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_execution_id_ctx_var: ContextVar[str | None] = ContextVar("execution_id", default=None)


def get_request_id() -> str | None:
    """Return the request identifier for the current context."""

    return _request_id_ctx_var.get()


def get_execution_id() -> str | None:
    """Return the identifier of the scraper execution running in this context."""

    return _execution_id_ctx_var.get()


@contextmanager
def execution_scope(scraper_id: int | str, iteration: int | None = None) -> Iterator[str]:
    """Tag every log record emitted inside the block with an execution id."""

    execution_id = f"scraper-{scraper_id}"
    if iteration is not None:
        execution_id = f"{execution_id}#{iteration}"
    token = _execution_id_ctx_var.set(execution_id)
    try:
        yield execution_id
    finally:
        _execution_id_ctx_var.reset(token)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a unique request identifier to each incoming request."""

    async def dispatch(self, request: Request, call_next: Callable[..., Any]):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        token = _request_id_ctx_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_ctx_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response


class ContextFilter(logging.Filter):
    """Inject the request and execution ids in each log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = get_request_id() or "-"
        record.execution_id = get_execution_id() or "-"
        return True


def setup_logging() -> None:
    """Configure logging handlers and formatters."""

    settings = get_settings()
    logger = logging.getLogger()
    logger.setLevel(settings.log_level)

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(request_id)s | %(execution_id)s"
        " | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    logger.handlers = [handler]


def configure_app_logging(app: FastAPI) -> None:
    """Attach logging middleware and ensure handlers are configured."""

    setup_logging()
    app.add_middleware(RequestIDMiddleware)


__all__ = [
    "ContextFilter",
    "RequestIDMiddleware",
    "configure_app_logging",
    "execution_scope",
    "get_execution_id",
    "get_request_id",
    "setup_logging",
]
