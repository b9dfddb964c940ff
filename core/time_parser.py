"""
Flexible timestamp parsing for upstream observation rows.

Accepted forms:
- epoch seconds / epoch milliseconds (ints or floats; > 1e12 means ms)
- "YYYY-MM-DD HH:MM" / "YYYY-MM-DD HH:MM:SS" (local wall time)
- "YYYY-MM-DD" (local midnight)
- ISO-8601 with or without offset, trailing "Z" included
- RFC 2822 dates

Every successful parse returns an aware datetime in the local zone.
Anything else returns None; `parse_instant` never raises.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from email.utils import parsedate_to_datetime
from typing import Any, Optional, Union

from config import get_zone

EPOCH_MS_THRESHOLD = 1e12

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_RE_DATE_SPACE_TIME = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}(:\d{2})?$")
_RE_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DEDUP_KEY_FORMAT = "%Y-%m-%dT%H:%M:%S"


class ParseError(ValueError):
    """A timestamp value could not be interpreted."""


def _local(tz: Optional[tzinfo]) -> tzinfo:
    return tz if tz is not None else get_zone(None)


def _from_epoch(value: float, tz: tzinfo) -> datetime:
    if math.isnan(value) or math.isinf(value):
        raise ParseError(f"non-finite epoch {value!r}")
    try:
        if abs(value) > EPOCH_MS_THRESHOLD:
            instant = _EPOCH + timedelta(milliseconds=value)
        else:
            instant = _EPOCH + timedelta(seconds=value)
        return instant.astimezone(tz)
    except (OverflowError, ValueError) as e:
        raise ParseError(f"epoch out of range: {value!r}") from e


def _attach_local(naive_or_aware: datetime, tz: tzinfo) -> datetime:
    if naive_or_aware.tzinfo is None:
        return naive_or_aware.replace(tzinfo=tz)
    return naive_or_aware.astimezone(tz)


def _parse_text(text: str, tz: tzinfo) -> datetime:
    if _RE_DATE_SPACE_TIME.match(text):
        return _attach_local(datetime.fromisoformat(text.replace(" ", "T")), tz)
    if _RE_DATE_ONLY.match(text):
        return datetime.combine(date.fromisoformat(text), time(0, 0), tzinfo=tz)

    iso = text[:-1] + "+00:00" if text[-1:] in ("Z", "z") else text
    try:
        return _attach_local(datetime.fromisoformat(iso), tz)
    except ValueError:
        pass

    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError) as e:
        raise ParseError(f"unrecognized timestamp {text!r}") from e
    if parsed is None:
        raise ParseError(f"unrecognized timestamp {text!r}")
    return _attach_local(parsed, tz)


def parse_instant_strict(value: Any, tz: Optional[tzinfo] = None) -> datetime:
    """Like `parse_instant` but raises ParseError instead of returning None."""
    zone = _local(tz)
    if value is None or isinstance(value, bool):
        raise ParseError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError as e:
            raise ParseError(f"epoch out of range: {value!r}") from e
        return _from_epoch(number, zone)
    if isinstance(value, datetime):
        return _attach_local(value, zone)

    text = str(value).strip()
    if not text:
        raise ParseError("empty timestamp")
    try:
        return _parse_text(text, zone)
    except (OverflowError, ValueError) as e:
        if isinstance(e, ParseError):
            raise
        raise ParseError(f"invalid timestamp {text!r}") from e


def parse_instant(value: Any, tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Parse any supported timestamp form; None when unparseable."""
    try:
        return parse_instant_strict(value, tz)
    except ParseError:
        return None


def dedup_key(instant: datetime) -> str:
    """
    Second-resolution grouping key.

    Formatted in UTC so the repeated wall-clock hour at a DST fold still
    yields two distinct keys.
    """
    return instant.astimezone(timezone.utc).strftime(DEDUP_KEY_FORMAT)


def epoch_ms(instant: datetime) -> int:
    return int(round(instant.timestamp() * 1000))


def to_local_iso(
    day: Union[date, str],
    end: bool = False,
    with_offset: bool = False,
    tz: Optional[tzinfo] = None,
) -> str:
    """
    Bound of a calendar day as a query string value.

    start -> "YYYY-MM-DDT00:00:00", end -> "YYYY-MM-DDT23:59:59";
    with_offset appends the local UTC offset ("-03:00").
    """
    if isinstance(day, str):
        day = date.fromisoformat(day.strip())
    zone = _local(tz)
    wall = time(23, 59, 59) if end else time(0, 0, 0)
    local = datetime.combine(day, wall, tzinfo=zone)
    text = local.strftime("%Y-%m-%dT%H:%M:%S")
    if not with_offset:
        return text
    offset = local.utcoffset() or timedelta(0)
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"
