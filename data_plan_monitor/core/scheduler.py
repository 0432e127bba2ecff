"""
Periodic status refresh.

Runs refresh_status once at start-up and then on ticks aligned to the top of
the hour (every 60 minutes at :00, every 15 minutes at :00/:15/:30/:45).
Ticks missed while a run overran are skipped, never replayed.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .ingestion import RefreshState, refresh_status
from data_plan_monitor.storage.repository import ReadingRepository, StoreFailure
from data_plan_monitor.transport.mikrotik_client import TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(minutes=60)


@dataclass
class SchedulerState:
    """What the scheduler did last and when it runs next."""
    runs: int = 0
    last_run_at: Optional[datetime] = None
    last_outcome: Optional[RefreshState] = None
    last_error: Optional[str] = None
    next_run_at: Optional[datetime] = None


def next_aligned_run(now: datetime, interval: timedelta) -> datetime:
    """Get the first tick strictly after now.

    Ticks are multiples of interval counted from the start of now's hour.
    """
    hour_start = now.replace(minute=0, second=0, microsecond=0)
    interval_seconds = interval.total_seconds()
    remainder = (now - hour_start).total_seconds() % interval_seconds
    return now + timedelta(seconds=interval_seconds - remainder)


def run_scheduled(
    transport,
    repository: ReadingRepository,
    interval: timedelta = DEFAULT_INTERVAL,
    timeout: timedelta = timedelta(seconds=30),
    poll_interval: timedelta = timedelta(seconds=2),
    max_age: Optional[timedelta] = None,
    max_runs: Optional[int] = None,
    state: Optional[SchedulerState] = None,
    now: Optional[Callable[[], datetime]] = None,
    sleep: Callable[[float], None] = time.sleep
) -> SchedulerState:
    """Keep the reading history fresh by refreshing on a fixed cadence.

    A failed run is logged and recorded in the state; the next tick runs as
    usual.

    Args:
        transport: Object with fetch_all_messages() and request_status_message()
        repository: Reading store
        interval: Time between ticks
        timeout: How long each run waits for the carrier's answer
        poll_interval: Delay between inbox polls within a run
        max_age: Oldest acceptable reading age (defaults to interval minus a minute)
        max_runs: Stop after this many runs (None runs forever)
        state: State object to update in place
        now: Clock returning aware datetimes (defaults to UTC now)
        sleep: Sleep function taking seconds

    Returns:
        The scheduler state after the last run
    """
    if interval <= timedelta(0):
        raise ValueError("interval must be > 0")
    clock = now or (lambda: datetime.now(timezone.utc))
    state = state if state is not None else SchedulerState()
    if max_age is None:
        max_age = max(interval - timedelta(minutes=1), interval / 2)

    logger.info("Scheduler started; cadence every %s", interval)
    while True:
        _run_once(transport, repository, state, max_age, timeout, poll_interval, clock, sleep)
        if max_runs is not None and state.runs >= max_runs:
            return state

        state.next_run_at = next_aligned_run(clock(), interval)
        logger.info("Next run at %s", state.next_run_at)
        sleep(max((state.next_run_at - clock()).total_seconds(), 0.0))


def _run_once(transport, repository, state, max_age, timeout, poll_interval, clock, sleep) -> None:
    state.runs += 1
    state.last_run_at = clock()
    try:
        outcome = refresh_status(
            transport,
            repository,
            max_age=max_age,
            timeout=timeout,
            poll_interval=poll_interval,
            now=clock,
            sleep=sleep
        )
    except (TransportFailure, StoreFailure) as e:
        logger.error("Scheduled refresh failed: %s", e)
        state.last_outcome = None
        state.last_error = str(e)
        return

    state.last_outcome = outcome.state
    state.last_error = None
    if outcome.state == RefreshState.TIMEOUT:
        logger.warning("Scheduled refresh got no new status message")
