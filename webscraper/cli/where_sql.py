"""CLI entry point printing the SQL predicate of a where-schema JSON file."""
from __future__ import annotations

import sys
from contextlib import suppress
from pathlib import Path

import typer
from pydantic import TypeAdapter, ValidationError

from webscraper.core import json_utils
from webscraper.schemas.where import WhereSchema, to_where_mapping
from webscraper.scraping.where import WhereSchemaError, where_schema_to_sql


def compile_file(path: Path, *, validate: bool = True) -> str:
    """Return the SQL for the where schema stored in ``path``."""

    raw = json_utils.loads(path.read_text(encoding="utf-8"))
    if validate:
        raw = to_where_mapping(TypeAdapter(WhereSchema).validate_python(raw))
    return where_schema_to_sql(raw)


def main(
    schema_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Where schema JSON"),
    validate: bool = typer.Option(
        True, help="Validate the schema before compiling it"
    ),
) -> None:
    """Print the SQL boolean expression for ``schema_file``."""

    try:
        sql = compile_file(schema_file, validate=validate)
    except (ValidationError, WhereSchemaError) as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    typer.echo(sql)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    with suppress(KeyboardInterrupt):
        typer.run(main)
        sys.exit(0)
