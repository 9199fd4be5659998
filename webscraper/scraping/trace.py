"""Append-only container for the entries produced by one interpreter run."""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterator

from webscraper.core import json_utils
from webscraper.schemas.execution import (
    ErrorEntry,
    ExecutionInfoAdapter,
    ExecutionSummary,
    ExternalDataOperationEntry,
    SuccessEntry,
)


logger = logging.getLogger(__name__)

TraceListener = Callable[[Any], None]


class ExecutionTrace:
    """Ordered record of what a run did.

    Entries are never removed or reordered; listeners registered with
    :meth:`subscribe` are called synchronously with every appended entry.
    """

    def __init__(self, entries: list[Any] | None = None) -> None:
        self._entries: list[Any] = list(entries or [])
        self._listeners: list[TraceListener] = []

    def __iter__(self) -> Iterator[Any]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> Any:
        return self._entries[index]

    @property
    def entries(self) -> list[Any]:
        return list(self._entries)

    def subscribe(self, listener: TraceListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def append(self, entry: Any) -> Any:
        self._entries.append(entry)
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:  # pragma: no cover - listeners are best effort
                logger.exception("Execution trace listener failed")
        return entry

    def record_operation(self, operation: Any) -> ExternalDataOperationEntry:
        return self.append(ExternalDataOperationEntry(operation=operation))

    def finish_success(self, duration: float) -> SuccessEntry:
        return self.append(SuccessEntry(summary=ExecutionSummary(duration=duration)))

    def finish_error(self, message: str, duration: float) -> ErrorEntry:
        return self.append(
            ErrorEntry(
                error_message=message,
                summary=ExecutionSummary(duration=duration),
            )
        )

    @property
    def terminal_entry(self) -> SuccessEntry | ErrorEntry | None:
        if self._entries and isinstance(self._entries[-1], (SuccessEntry, ErrorEntry)):
            return self._entries[-1]
        return None

    @property
    def succeeded(self) -> bool:
        return isinstance(self.terminal_entry, SuccessEntry)

    @property
    def error_message(self) -> str | None:
        terminal = self.terminal_entry
        if isinstance(terminal, ErrorEntry):
            return terminal.error_message
        return None

    def to_wire(self) -> list[dict[str, Any]]:
        """Return the entries as camelCase JSON-compatible dictionaries."""

        return ExecutionInfoAdapter.dump_python(
            self._entries, mode="json", by_alias=True, exclude_none=True
        )

    def to_json(self, indent: int | None = None) -> str:
        return json_utils.dumps(self.to_wire(), indent=indent)

    @classmethod
    def from_wire(cls, data: list[Any]) -> "ExecutionTrace":
        return cls(ExecutionInfoAdapter.validate_python(data))

    @classmethod
    def from_json(cls, payload: str) -> "ExecutionTrace":
        return cls.from_wire(json_utils.loads(payload))


__all__ = ["ExecutionTrace", "TraceListener"]
