"""
Ingestion of carrier messages into the reading history.

Each message is parsed and stored independently: a malformed message is
counted and skipped, a message already stored is counted as a duplicate.
Only transport and store failures abort a run.

Importing the same messages again leaves the store unchanged, because the
store rejects any reading whose timestamp is already present.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable, List, NamedTuple, Optional

from .parser import ParseError, parse_message
from data_plan_monitor.storage.models import UsageReading
from data_plan_monitor.storage.repository import ReadingRepository

logger = logging.getLogger(__name__)


class RawMessage(NamedTuple):
    """Message text as delivered by the transport, with its receipt time."""
    text: str
    received_at: Optional[datetime]


@dataclass
class ImportReport:
    """Tally of one import run."""
    total: int = 0
    parsed_ok: int = 0
    rejected: int = 0
    inserted: int = 0
    duplicate: int = 0
    errors: List[ParseError] = field(default_factory=list)

    def merge(self, other: "ImportReport") -> "ImportReport":
        """Combine two reports into a new one."""
        return ImportReport(
            total=self.total + other.total,
            parsed_ok=self.parsed_ok + other.parsed_ok,
            rejected=self.rejected + other.rejected,
            inserted=self.inserted + other.inserted,
            duplicate=self.duplicate + other.duplicate,
            errors=self.errors + other.errors
        )


def import_messages(
    raw_messages: Iterable[RawMessage],
    repository: ReadingRepository
) -> ImportReport:
    """Parse messages and store the resulting readings.

    Args:
        raw_messages: (text, received_at) pairs, in any order
        repository: Store providing insert_if_absent

    Returns:
        ImportReport with per-outcome counts

    Raises:
        StoreFailure: If the store fails; the run stops at that message
    """
    report = ImportReport()
    for text, received_at in raw_messages:
        report.total += 1
        result = parse_message(text, received_at)

        if isinstance(result, ParseError):
            report.rejected += 1
            report.errors.append(result)
            logger.warning("Rejected message: %s", result)
            continue

        report.parsed_ok += 1
        if repository.insert_if_absent(result):
            report.inserted += 1
        else:
            report.duplicate += 1

    logger.info(
        "Import finished: total=%d parsed=%d rejected=%d inserted=%d duplicate=%d",
        report.total, report.parsed_ok, report.rejected, report.inserted, report.duplicate
    )
    return report


def run_import(transport, repository: ReadingRepository) -> ImportReport:
    """Fetch the whole inbox from the transport and import it.

    Args:
        transport: Object with fetch_all_messages() returning RawMessage pairs
        repository: Reading store

    Raises:
        TransportFailure: If fetching fails; nothing is imported
        StoreFailure: If the store fails
    """
    messages = transport.fetch_all_messages()
    return import_messages(messages, repository)


class RefreshState(Enum):
    """How a refresh ended."""
    CURRENT = "current"        # Stored reading was already fresh
    REFRESHED = "refreshed"    # A new reading arrived after the request
    TIMEOUT = "timeout"        # No new reading before the timeout


@dataclass
class RefreshOutcome:
    """Result of a refresh attempt."""
    state: RefreshState
    latest_reading: Optional[UsageReading]
    report: ImportReport


def _is_fresh(reading: Optional[UsageReading], reference: datetime, max_age: timedelta) -> bool:
    if reading is None:
        return False
    return reference - reading.timestamp <= max_age


def refresh_status(
    transport,
    repository: ReadingRepository,
    max_age: timedelta,
    timeout: timedelta,
    poll_interval: timedelta,
    force: bool = False,
    now: Optional[Callable[[], datetime]] = None,
    sleep: Callable[[float], None] = time.sleep
) -> RefreshOutcome:
    """Make sure the history holds a reading no older than max_age.

    Imports the inbox first. When the newest reading is too old, or force is
    set, asks the carrier for a status message and re-imports every
    poll_interval until a newer fresh reading appears or timeout elapses.

    Args:
        transport: Object with fetch_all_messages() and request_status_message()
        repository: Reading store
        max_age: Oldest acceptable reading age
        timeout: How long to wait for the carrier's answer
        poll_interval: Delay between inbox polls
        force: Request a new status even if the stored one is fresh
        now: Clock returning aware datetimes (defaults to UTC now)
        sleep: Sleep function taking seconds

    Returns:
        RefreshOutcome with the newest reading and the cumulative report

    Raises:
        TransportFailure: If the router cannot be reached
        StoreFailure: If the store fails
    """
    clock = now or (lambda: datetime.now(timezone.utc))

    report = run_import(transport, repository)
    started = clock()
    before = repository.get_latest_reading()
    if not force and _is_fresh(before, started, max_age):
        return RefreshOutcome(RefreshState.CURRENT, before, report)

    transport.request_status_message()
    while True:
        sleep(poll_interval.total_seconds())
        report = report.merge(run_import(transport, repository))
        latest = repository.get_latest_reading()
        is_new = latest is not None and (before is None or latest.timestamp > before.timestamp)
        if is_new and _is_fresh(latest, started, max_age):
            logger.info("Fresh reading received at %s", latest.timestamp)
            return RefreshOutcome(RefreshState.REFRESHED, latest, report)
        if clock() - started > timeout:
            logger.warning("Timed out waiting for a status message after %s", timeout)
            return RefreshOutcome(RefreshState.TIMEOUT, latest, report)
