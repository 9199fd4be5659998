from __future__ import annotations

from types import SimpleNamespace

import pytest

from webscraper.schemas.routine import IntervalScheduler, RoutineStatus
from webscraper.scraping.scheduler import calculate_next_scheduled_execution_at


NOW = 1_700_000_000_000
HOUR = 3_600_000


def _routine(status=RoutineStatus.ACTIVE, **scheduler) -> SimpleNamespace:
    return SimpleNamespace(status=status, scheduler=IntervalScheduler(**scheduler))


@pytest.mark.parametrize(
    "status",
    [
        RoutineStatus.EXECUTING,
        RoutineStatus.PAUSED,
        RoutineStatus.PAUSED_DUE_TO_MAX_NUMBER_OF_FAILED_EXECUTIONS,
    ],
)
def test_inactive_routines_are_never_scheduled(status: RoutineStatus) -> None:
    routine = _routine(status, interval=HOUR, start_at=NOW + HOUR)

    assert calculate_next_scheduled_execution_at(routine, NOW) is None


def test_end_in_the_past() -> None:
    routine = _routine(interval=HOUR, start_at=NOW - 10 * HOUR, end_at=NOW - 1)

    assert calculate_next_scheduled_execution_at(routine, NOW) is None


def test_end_equal_to_now_is_already_over() -> None:
    routine = _routine(interval=HOUR, start_at=NOW - 10 * HOUR, end_at=NOW)

    assert calculate_next_scheduled_execution_at(routine, NOW) is None


def test_future_start_is_returned_as_is() -> None:
    routine = _routine(interval=HOUR, start_at=NOW + 5_000, end_at=NOW + 10 * HOUR)

    assert calculate_next_scheduled_execution_at(routine, NOW) == NOW + 5_000


def test_future_start_after_end() -> None:
    routine = _routine(interval=HOUR, start_at=NOW + 2 * HOUR, end_at=NOW + HOUR)

    assert calculate_next_scheduled_execution_at(routine, NOW) is None


def test_elapsed_intervals() -> None:
    start_at = NOW - 2 * HOUR - 30 * 60_000
    routine = _routine(interval=HOUR, start_at=start_at)

    assert calculate_next_scheduled_execution_at(routine, NOW) == start_at + 3 * HOUR


def test_now_on_a_boundary_moves_to_the_next_one() -> None:
    routine = _routine(interval=HOUR, start_at=NOW - 2 * HOUR)

    assert calculate_next_scheduled_execution_at(routine, NOW) == NOW + HOUR


def test_start_equal_to_now() -> None:
    routine = _routine(interval=HOUR, start_at=NOW)

    assert calculate_next_scheduled_execution_at(routine, NOW) == NOW + HOUR


def test_candidate_equal_to_end_is_inclusive() -> None:
    routine = _routine(interval=HOUR, start_at=NOW - 30 * 60_000, end_at=NOW + 30 * 60_000)

    assert calculate_next_scheduled_execution_at(routine, NOW) == NOW + 30 * 60_000


def test_candidate_past_end() -> None:
    routine = _routine(interval=HOUR, start_at=NOW - 30 * 60_000, end_at=NOW + 30 * 60_000 - 1)

    assert calculate_next_scheduled_execution_at(routine, NOW) is None


def test_accepts_raw_scheduler_payload_and_status_string() -> None:
    routine = SimpleNamespace(
        status="active",
        scheduler={"type": "interval", "interval": 1000, "startAt": NOW - 2500},
    )

    assert calculate_next_scheduled_execution_at(routine, NOW) == NOW + 500
