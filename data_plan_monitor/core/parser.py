"""
Carrier status message parsing.

Turns the free-text status SMS sent by the carrier into a UsageReading.

The carrier uses a small, fixed set of message shapes, so each one is a
MessageTemplate matched in priority order rather than a general grammar.
Templates are anchored at the start of the normalized text and begin with
distinct wording, so at most one of them matches a valid message.

Parsing never raises: every failure comes back as a ParseError carrying the
offending text, and the caller decides whether to skip or log it.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple, Union

from data_plan_monitor.storage.models import UsageReading

# Conversion assumed from the carrier's "GIGA" wording; not yet confirmed
# against the carrier's own quota figures.
MB_PER_GB = 1024

UNIT_FACTORS = {
    "mb": 1,
    "gb": MB_PER_GB,
    "giga": MB_PER_GB,
}

_NUMBER = r"\d[\d.,]*"
_UNIT = r"mb|gb|giga"

_PLAIN_NUMBER = re.compile(r"^\d+$")
_DECIMAL_NUMBER = re.compile(r"^(\d+)[.,](\d+)$")
_GROUPED_NUMBER = re.compile(r"^\d{1,3}([.,])\d{3}(?:\1\d{3})*(?:([.,])(\d+))?$")


@dataclass(frozen=True)
class ParseError:
    """A message that could not be turned into a reading."""
    raw_text: str
    reason: str

    def __str__(self) -> str:
        return f"{self.reason}: {self.raw_text!r}"


@dataclass(frozen=True)
class _Extraction:
    used_mb: float
    total_mb: float
    embedded_at: Optional[datetime] = None  # naive, zone comes from the caller


@dataclass(frozen=True)
class MessageTemplate:
    """One known carrier message shape."""
    name: str
    pattern: "re.Pattern"
    extract: Callable[["re.Match"], _Extraction]


def normalize_message(raw_text: str) -> str:
    """Collapse whitespace and lower-case the message."""
    return " ".join(raw_text.split()).lower()


def parse_quantity(text: str) -> float:
    """Parse a carrier number with either decimal separator.

    A single "," or "." is the decimal separator. Groups of three digits
    split by one separator are thousands, optionally followed by the other
    separator as decimal point ("1.024,5" or "1,024.5").

    Raises:
        ValueError: If the text is not a number in any of these forms
    """
    if _PLAIN_NUMBER.match(text):
        return float(text)

    match = _DECIMAL_NUMBER.match(text)
    if match:
        return float(f"{match.group(1)}.{match.group(2)}")

    match = _GROUPED_NUMBER.match(text)
    if match and match.group(1) != match.group(2):
        integer_part = text[:match.start(2)] if match.group(2) else text
        integer_part = integer_part.replace(match.group(1), "")
        if match.group(3) is not None:
            return float(f"{integer_part}.{match.group(3)}")
        return float(integer_part)

    raise ValueError(f"Invalid number: {text}")


def to_megabytes(quantity: str, unit: str) -> float:
    """Convert a quantity in a carrier unit to megabytes.

    Raises:
        ValueError: If the quantity is malformed or too large to represent
    """
    megabytes = parse_quantity(quantity) * UNIT_FACTORS[unit]
    if not math.isfinite(megabytes):
        raise ValueError(f"Quantity out of range: {quantity[:20]}...")
    return megabytes


def _extract_remaining_percent(match: "re.Match") -> _Extraction:
    percent = parse_quantity(match.group("percent"))
    if percent > 100:
        raise ValueError(f"Remaining percentage above 100: {percent}")
    total_mb = to_megabytes(match.group("total"), match.group("total_unit"))
    return _Extraction(
        used_mb=total_mb * (100 - percent) / 100,
        total_mb=total_mb
    )


def _extract_used_of_total(match: "re.Match") -> _Extraction:
    return _Extraction(
        used_mb=to_megabytes(match.group("used"), match.group("used_unit")),
        total_mb=to_megabytes(match.group("total"), match.group("total_unit"))
    )


def _extract_remaining_of_total(match: "re.Match") -> _Extraction:
    remaining_mb = to_megabytes(match.group("remaining"), match.group("remaining_unit"))
    total_mb = to_megabytes(match.group("total"), match.group("total_unit"))
    if remaining_mb > total_mb:
        raise ValueError("Remaining data exceeds the plan total")
    return _Extraction(used_mb=total_mb - remaining_mb, total_mb=total_mb)


def _extract_dated_usage(match: "re.Match") -> _Extraction:
    day, month, year = (int(part) for part in match.group("date").split("/"))
    hour, minute = 0, 0
    if match.group("time"):
        hour, minute = (int(part) for part in re.split(r"[:.]", match.group("time")))
    return _Extraction(
        used_mb=to_megabytes(match.group("used"), match.group("used_unit")),
        total_mb=to_megabytes(match.group("total"), match.group("total_unit")),
        embedded_at=datetime(year, month, day, hour, minute)
    )


# Priority order matters only for diagnostics; the anchors keep them exclusive.
TEMPLATES: List[MessageTemplate] = [
    MessageTemplate(
        name="remaining_percent",
        pattern=re.compile(
            rf"^dati: hai ancora a disposizione il (?P<percent>{_NUMBER}) ?% "
            rf"di (?P<total>{_NUMBER}) ?(?P<total_unit>{_UNIT})\b"
        ),
        extract=_extract_remaining_percent
    ),
    MessageTemplate(
        name="used_of_total",
        pattern=re.compile(
            rf"^hai usato (?P<used>{_NUMBER}) ?(?P<used_unit>{_UNIT}) "
            rf"su (?P<total>{_NUMBER}) ?(?P<total_unit>{_UNIT})\b"
        ),
        extract=_extract_used_of_total
    ),
    MessageTemplate(
        name="remaining_of_total",
        pattern=re.compile(
            rf"^ti restano (?P<remaining>{_NUMBER}) ?(?P<remaining_unit>{_UNIT}) "
            rf"su (?P<total>{_NUMBER}) ?(?P<total_unit>{_UNIT})\b"
        ),
        extract=_extract_remaining_of_total
    ),
    MessageTemplate(
        name="dated_usage",
        pattern=re.compile(
            r"^al (?P<date>\d{1,2}/\d{1,2}/\d{4})(?: ore (?P<time>\d{1,2}[:.]\d{2}))?,? "
            rf"hai consumato (?P<used>{_NUMBER}) ?(?P<used_unit>{_UNIT}) "
            rf"dei (?P<total>{_NUMBER}) ?(?P<total_unit>{_UNIT})\b"
        ),
        extract=_extract_dated_usage
    ),
]


def match_template(normalized_text: str) -> Optional[Tuple[MessageTemplate, "re.Match"]]:
    """Return the first template matching the normalized text, if any."""
    for template in TEMPLATES:
        match = template.pattern.match(normalized_text)
        if match:
            return template, match
    return None


def parse_message(
    raw_text: str,
    received_at: Optional[datetime]
) -> Union[UsageReading, ParseError]:
    """Parse a carrier status message into a usage reading.

    The timestamp embedded in the message wins over the receipt time. An
    embedded time is read in the zone of received_at, or UTC without one.

    Args:
        raw_text: Message payload as delivered by the transport
        received_at: Receipt time reported by the transport, if known

    Returns:
        UsageReading on success, ParseError otherwise (never raises)
    """
    if not raw_text or not raw_text.strip():
        return ParseError(raw_text or "", "Empty message")

    found = match_template(normalize_message(raw_text))
    if found is None:
        return ParseError(raw_text, "No known template matches")
    template, match = found

    try:
        extraction = template.extract(match)
    except (ValueError, OverflowError) as e:
        return ParseError(raw_text, f"Invalid {template.name} message ({e})")

    if extraction.embedded_at is not None:
        zone = received_at.tzinfo if received_at is not None and received_at.tzinfo else timezone.utc
        timestamp = extraction.embedded_at.replace(tzinfo=zone)
    elif received_at is not None:
        timestamp = received_at
    else:
        return ParseError(raw_text, "No timestamp in message or transport metadata")

    try:
        return UsageReading(
            timestamp=timestamp,
            used_mb=extraction.used_mb,
            total_mb=extraction.total_mb,
            raw_text=raw_text
        )
    except ValueError as e:
        return ParseError(raw_text, str(e))
