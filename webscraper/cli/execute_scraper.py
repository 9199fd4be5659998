"""CLI entry point to run a stored scraper and print its execution trace."""
from __future__ import annotations

import asyncio
import sys
from contextlib import suppress
from pathlib import Path
from typing import Any

import typer
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from webscraper.core import json_utils
from webscraper.core.browser import browser_session
from webscraper.core.logging import setup_logging
from webscraper.db import models
from webscraper.db.base import get_sessionmaker
from webscraper.schemas.routine import ExecutionIterator
from webscraper.services.data_bridge import create_data_bridge
from webscraper.services.records import serialise_scraper
from webscraper.services.routine_runner import execute_scraper, iteration_failed


def _open_session() -> Session:
    SessionLocal = get_sessionmaker()
    return SessionLocal()


def _load_iterator(path: Path | None) -> Any:
    if path is None:
        return None
    raw = json_utils.loads(path.read_text(encoding="utf-8"))
    return TypeAdapter(ExecutionIterator).validate_python(raw)


async def _run(scraper_id: int, iterator: Any, headless: bool) -> list[Any]:
    with _open_session() as session:
        scraper_row = session.get(models.Scraper, scraper_id)
        if scraper_row is None:
            raise LookupError(f"Scraper {scraper_id} not found")
        scraper = serialise_scraper(scraper_row)
        data_sources = scraper_row.get_data_sources()

    async with browser_session(f"cli-scraper-{scraper_id}", headless=headless) as browser:
        return await execute_scraper(
            scraper,
            driver=browser.driver,
            data_bridge=create_data_bridge(data_sources),
            iterator=iterator,
        )


def launch(
    scraper_id: int = typer.Argument(..., help="Identifier of the scraper to run"),
    iterator_file: Path | None = typer.Option(
        None,
        "--iterator",
        help="JSON file describing the execution iterator (range, entire-set or filtered-set)",
    ),
    headless: bool = typer.Option(True, help="Run browser in headless mode"),
    output: Path | None = typer.Option(None, help="Optional path where to save the JSON trace"),
) -> None:
    """Run scraper ``scraper_id`` and print the trace of every iteration."""

    setup_logging()
    try:
        iterator = _load_iterator(iterator_file)
        iterations = asyncio.run(_run(scraper_id, iterator, headless))
    except (ValidationError, LookupError) as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    except Exception as exc:  # pragma: no cover - runtime safety
        typer.secho(f"Execution failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc

    payload = json_utils.dumps(
        [iteration.model_dump(by_alias=True, mode="json") for iteration in iterations],
        indent=2,
    )
    if output is not None:
        output.write_text(payload + "\n", encoding="utf-8")
        typer.echo(f"Trace saved to {output}")
    else:
        typer.echo(payload)

    if any(iteration_failed(iteration) for iteration in iterations):
        raise typer.Exit(code=3)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    with suppress(KeyboardInterrupt):
        typer.run(launch)
        sys.exit(0)
