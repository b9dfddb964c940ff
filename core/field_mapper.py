"""
Field extraction for loosely shaped upstream rows.

Upstream payloads vary per source: different key names for the same
measurement, timestamps under arbitrary keys or split across
date/hour/minute/second fields, sometimes nested one level down.
This module maps them onto CanonicalObservation / CanonicalTideEvent.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import tzinfo
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from core.models import CanonicalObservation, CanonicalTideEvent, TideType
from core.time_parser import parse_instant

logger = logging.getLogger("field_mapper")

RawRecord = Dict[str, Any]
AliasTable = Tuple[Tuple[str, Tuple[str, ...]], ...]

# ============================================================================
# TIMESTAMP DISCOVERY
# ============================================================================

TIME_KEY_PREFERENCE: Tuple[str, ...] = (
    "ts",
    "timestamp",
    "datetime",
    "time",
    "date_time",
    "datetime_utc",
    "time_utc",
    "dt",
    "epoch",
    "ts_epoch",
)

COMPOSITE_DATE_KEYS: Tuple[str, ...] = ("date", "day", "dia", "data")
COMPOSITE_HOUR_KEYS: Tuple[str, ...] = ("hour", "hora", "hh")
COMPOSITE_MINUTE_KEYS: Tuple[str, ...] = ("minute", "min", "minuto")
COMPOSITE_SECOND_KEYS: Tuple[str, ...] = ("second", "sec", "segundo")

MAX_TIME_SEARCH_DEPTH = 2

_RE_TIME_LIKE_KEY = re.compile(r"time|date", re.IGNORECASE)

# ============================================================================
# FIELD ALIASES (canonical field, source keys in priority order)
# ============================================================================

OBSERVATION_FIELD_ALIASES: AliasTable = (
    ("hs", ("hs", "waveHeight", "wave_height", "wvht")),
    ("tp", ("tp", "wavePeriod", "wave_period", "dpd")),
    ("dp", ("dp", "waveDirection", "wave_direction", "mwd")),
    ("sst", ("sst", "waterTemperature", "water_temp", "wtmp")),
    ("air", ("air_temp", "airTemperature", "air", "atmp")),
    ("ws", ("wind_speed", "windSpeed", "ws", "wspd")),
    ("wd", ("wind_dir", "windDirection", "wd", "wdir")),
)

TIDE_FIELD_ALIASES: AliasTable = (
    ("height", ("height", "tide", "value", "level")),
    ("type", ("type", "event")),
)

DIRECTION_FIELDS = frozenset({"dp", "wd"})

# ============================================================================
# TIDE TYPE VOCABULARY (English / Portuguese)
# ============================================================================

TIDE_TYPE_PATTERNS: Tuple[Tuple[TideType, "re.Pattern[str]"], ...] = (
    (TideType.HIGH, re.compile(r"high|alta|pre[aá]-?mar", re.IGNORECASE)),
    (TideType.LOW, re.compile(r"low|baixa|baix[aá]-?mar", re.IGNORECASE)),
    (TideType.EBB, re.compile(r"ebb|vazante", re.IGNORECASE)),
    (TideType.FLOOD, re.compile(r"flood|enchente", re.IGNORECASE)),
)


def rows_from_payload(payload: Any) -> List[RawRecord]:
    """Accept a bare list, or an object wrapping it under `items` / `data`."""
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict) and isinstance(payload.get("items"), list):
        rows = payload["items"]
    elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
        rows = payload["data"]
    else:
        return []
    return [row for row in rows if isinstance(row, dict)]


def _is_scalar_time(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and bool(value.strip())


def _first_key(record: RawRecord, names: Sequence[str]) -> Optional[str]:
    for name in names:
        if name in record:
            return name
    return None


def _clock_part(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return int(number)


def _composite_time(record: RawRecord) -> Optional[str]:
    date_key = _first_key(record, COMPOSITE_DATE_KEYS)
    if date_key is None:
        return None
    date_value = record[date_key]
    if not isinstance(date_value, str) or not date_value.strip():
        return None

    hour_key = _first_key(record, COMPOSITE_HOUR_KEYS)
    minute_key = _first_key(record, COMPOSITE_MINUTE_KEYS)
    second_key = _first_key(record, COMPOSITE_SECOND_KEYS)
    if hour_key is None and minute_key is None and second_key is None:
        return None

    hour = _clock_part(record.get(hour_key)) if hour_key else 0
    minute = _clock_part(record.get(minute_key)) if minute_key else 0
    second = _clock_part(record.get(second_key)) if second_key else 0
    return f"{date_value.strip()[:10]} {hour:02d}:{minute:02d}:{second:02d}"


def _search_time(record: RawRecord, depth: int, seen: set) -> Optional[Any]:
    if id(record) in seen:
        return None
    seen.add(id(record))

    for key in TIME_KEY_PREFERENCE:
        value = record.get(key)
        if _is_scalar_time(value):
            return value

    composite = _composite_time(record)
    if composite is not None:
        return composite

    for key, value in record.items():
        if _RE_TIME_LIKE_KEY.search(str(key)) and _is_scalar_time(value):
            return value

    if depth >= MAX_TIME_SEARCH_DEPTH:
        return None
    for value in record.values():
        if isinstance(value, dict):
            found = _search_time(value, depth + 1, seen)
            if found is not None:
                return found
    return None


def extract_time(record: RawRecord) -> Optional[Any]:
    """
    Locate the most plausible raw timestamp value of a row.

    Order: known key names, a synthesized "YYYY-MM-DD HH:MM:SS" from split
    date/hour/minute/second fields, any *time*/*date* key, then the same
    search inside nested objects (bounded depth).
    """
    if not isinstance(record, dict):
        return None
    return _search_time(record, 0, set())


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip().replace(",", "."))
        else:
            return None
    except (ValueError, OverflowError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _wrap_degrees(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return value % 360.0


def pick_aliases(record: RawRecord, table: AliasTable) -> Dict[str, Any]:
    """
    Resolve each canonical field to the first alias present in the record.

    A present key wins even when it holds null; fields with no matching key
    are None.
    """
    out: Dict[str, Any] = {}
    for field_name, aliases in table:
        key = _first_key(record, aliases)
        out[field_name] = record[key] if key is not None else None
    return out


def normalize_tide_type(value: Any) -> Optional[Union[TideType, str]]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    for tide_type, pattern in TIDE_TYPE_PATTERNS:
        if pattern.search(text):
            return tide_type
    return text[:1].upper() + text[1:]


def map_observation(record: RawRecord, tz: Optional[tzinfo] = None) -> CanonicalObservation:
    values = pick_aliases(record, OBSERVATION_FIELD_ALIASES)
    numbers: Dict[str, Optional[float]] = {}
    for name, raw in values.items():
        number = _to_float(raw)
        if raw is not None and number is None:
            logger.debug(f"Dropping non-numeric {name}={raw!r}")
        numbers[name] = _wrap_degrees(number) if name in DIRECTION_FIELDS else number
    return CanonicalObservation(time=parse_instant(extract_time(record), tz), **numbers)


def map_tide_event(record: RawRecord, tz: Optional[tzinfo] = None) -> CanonicalTideEvent:
    values = pick_aliases(record, TIDE_FIELD_ALIASES)
    return CanonicalTideEvent(
        time=parse_instant(extract_time(record), tz),
        height=_to_float(values["height"]),
        type=normalize_tide_type(values["type"]),
    )


def map_observations(payload: Any, tz: Optional[tzinfo] = None) -> List[CanonicalObservation]:
    return [map_observation(row, tz) for row in rows_from_payload(payload)]


def map_tide_events(payload: Any, tz: Optional[tzinfo] = None) -> List[CanonicalTideEvent]:
    return [map_tide_event(row, tz) for row in rows_from_payload(payload)]
