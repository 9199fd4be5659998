"""Compute the next run time of an interval-scheduled routine."""
from __future__ import annotations

import time
from typing import Any

from webscraper.schemas.routine import IntervalScheduler, RoutineStatus


def now_ms() -> int:
    """Return the current time in milliseconds since the epoch."""

    return int(time.time() * 1000)


def calculate_next_scheduled_execution_at(routine: Any, now: int) -> int | None:
    """Return the epoch-ms timestamp of the routine's next run, or ``None``.

    ``routine`` only needs ``status`` and ``scheduler`` attributes, so both
    API models and in-memory stand-ins can be passed. The result is strictly
    after the most recently elapsed interval boundary; a candidate equal to
    ``end_at`` is still returned.
    """

    if RoutineStatus(routine.status) != RoutineStatus.ACTIVE:
        return None

    scheduler = routine.scheduler
    if not isinstance(scheduler, IntervalScheduler):
        scheduler = IntervalScheduler.model_validate(scheduler)

    start_at = scheduler.start_at
    end_at = scheduler.end_at

    if end_at is not None and end_at <= now:
        return None

    if start_at > now:
        if end_at is not None and end_at < start_at:
            return None
        return start_at

    next_multiplier = (now - start_at) // scheduler.interval + 1
    candidate = start_at + next_multiplier * scheduler.interval
    if end_at is not None and candidate > end_at:
        return None
    return candidate


__all__ = ["calculate_next_scheduled_execution_at", "now_ms"]
