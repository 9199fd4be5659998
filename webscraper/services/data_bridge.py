"""Read and write scraper data in the user data store through SQLAlchemy."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine

from webscraper.core.config import Settings, get_settings
from webscraper.db.base import get_data_store_engine

if TYPE_CHECKING:  # pragma: no cover - imported for annotations only
    from webscraper.scraping.iterator import IterationContext


logger = logging.getLogger(__name__)

StoreValue = Any


class UnknownDataSource(KeyError):
    """Raised when a data key references an alias the scraper does not declare."""

    def __str__(self) -> str:
        return f"Unknown data source: {self.args[0]}"


class DataBridge(Protocol):
    """Data store operations available to a running scraper."""

    identifier_column: str

    def bind(self, context: "IterationContext | None") -> "DataBridge":
        ...

    async def get(self, key: str) -> StoreValue:
        ...

    async def set(self, key: str, value: StoreValue) -> None:
        ...

    async def set_many(
        self, data_source_name: str, items: Sequence[tuple[str, StoreValue]]
    ) -> None:
        ...

    async def delete(self, data_source_name: str) -> None:
        ...

    async def fetch_rows(
        self, data_source_name: str, where_sql: str | None = None
    ) -> list[dict[str, Any]]:
        ...


def split_data_key(key: str) -> tuple[str, str]:
    """Split ``source.column`` into its two parts."""

    source, separator, column = key.partition(".")
    if not separator or not source or not column or "." in column:
        raise ValueError(f"Invalid data key: {key}")
    return source, column


class SqlDataBridge:
    """Data bridge backed by plain tables reachable through ``engine``.

    ``data_sources`` maps the aliases used in data keys to table names. When
    the bridge is bound to an iteration context, reads and writes on the
    context's data source target the context row; otherwise reads use the
    first row, writes insert a new row and deletes clear the table.
    """

    def __init__(
        self,
        engine: Engine,
        data_sources: Mapping[str, str],
        *,
        identifier_column: str = "id",
        context: "IterationContext | None" = None,
    ) -> None:
        self.engine = engine
        self.data_sources = dict(data_sources)
        self.identifier_column = identifier_column
        self.context = context

    def bind(self, context: "IterationContext | None") -> "SqlDataBridge":
        """Return a bridge targeting the row of ``context``."""

        return SqlDataBridge(
            self.engine,
            self.data_sources,
            identifier_column=self.identifier_column,
            context=context,
        )

    def _quote(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(name)

    def _table(self, data_source_name: str) -> str:
        try:
            return self._quote(self.data_sources[data_source_name])
        except KeyError as exc:
            raise UnknownDataSource(data_source_name) from exc

    def _row_filter(self, data_source_name: str) -> tuple[str, dict[str, Any]]:
        context = self.context
        if context is None or context.data_source_name != data_source_name:
            return "", {}
        return f" WHERE {self._quote(context.identifier)} = :_row_id", {"_row_id": context.value}

    def _bound(self, data_source_name: str) -> bool:
        return self.context is not None and self.context.data_source_name == data_source_name

    async def get(self, key: str) -> StoreValue:
        source, column = split_data_key(key)
        table = self._table(source)
        where, params = self._row_filter(source)
        statement = text(f"SELECT {self._quote(column)} FROM {table}{where} LIMIT 1")
        with self.engine.connect() as connection:
            row = connection.execute(statement, params).first()
        return None if row is None else row[0]

    async def set(self, key: str, value: StoreValue) -> None:
        source, column = split_data_key(key)
        await self.set_many(source, [(column, value)])

    async def set_many(
        self, data_source_name: str, items: Sequence[tuple[str, StoreValue]]
    ) -> None:
        if not items:
            return
        table = self._table(data_source_name)
        params = {f"_v{index}": value for index, (_, value) in enumerate(items)}
        columns = [self._quote(column) for column, _ in items]

        if self._bound(data_source_name):
            assignments = ", ".join(
                f"{column} = :_v{index}" for index, column in enumerate(columns)
            )
            where, row_params = self._row_filter(data_source_name)
            params.update(row_params)
            statement = text(f"UPDATE {table} SET {assignments}{where}")
        else:
            placeholders = ", ".join(f":_v{index}" for index in range(len(columns)))
            statement = text(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
            )

        with self.engine.begin() as connection:
            connection.execute(statement, params)
        logger.debug("Stored %s value(s) in %s", len(items), data_source_name)

    async def delete(self, data_source_name: str) -> None:
        table = self._table(data_source_name)
        where, params = self._row_filter(data_source_name)
        with self.engine.begin() as connection:
            connection.execute(text(f"DELETE FROM {table}{where}"), params)

    async def fetch_rows(
        self, data_source_name: str, where_sql: str | None = None
    ) -> list[dict[str, Any]]:
        """Return the rows of a data source, optionally filtered by raw SQL."""

        table = self._table(data_source_name)
        query = f"SELECT * FROM {table}"
        if where_sql:
            # colons in literals must not be read as bind parameters
            query += " WHERE " + where_sql.replace(":", r"\:")
        with self.engine.connect() as connection:
            rows: Iterable[Any] = connection.execute(text(query)).mappings().all()
        return [dict(row) for row in rows]


def create_data_bridge(
    data_sources: Mapping[str, str], *, settings: Settings | None = None
) -> SqlDataBridge:
    """Return a bridge over the configured data store."""

    settings = settings or get_settings()
    return SqlDataBridge(
        get_data_store_engine(),
        data_sources,
        identifier_column=settings.data_store_identifier_column,
    )


__all__ = [
    "DataBridge",
    "SqlDataBridge",
    "UnknownDataSource",
    "create_data_bridge",
    "split_data_key",
]
