"""
Presentation helpers for the series consumers (tables, charts, summary grid).
"""

from __future__ import annotations

import math
from datetime import datetime, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from core.models import CanonicalObservation, CanonicalTideEvent
from core.time_parser import epoch_ms

EMPTY = "—"

COMPASS_16 = (
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
)

SUMMARY_LABELS: Dict[str, str] = {
    "date": "Date",
    "hs_avg": "Wave height",
    "tp_avg": "Period",
    "dp_avg": "Wave direction",
    "sst_avg": "Water temp.",
    "air_temp_avg": "Air temp.",
    "wind_speed_avg": "Wind",
    "wind_dir_avg": "Wind direction",
}

SUMMARY_UNITS: Dict[str, str] = {
    "hs_avg": "m",
    "tp_avg": "s",
    "dp_avg": "°",
    "sst_avg": "°C",
    "air_temp_avg": "°C",
    "wind_speed_avg": "m/s",
    "wind_dir_avg": "°",
}

SUMMARY_DIRECTION_KEYS = frozenset({"dp_avg", "wind_dir_avg"})


def _is_number(value: Any) -> bool:
    """Finite int or float; bools, NaN and infinities are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not _is_number(value)


def deg_to_compass16(deg: float) -> str:
    idx = math.floor(((deg + 11.25) % 360) / 22.5) % 16
    return COMPASS_16[idx]


def fmt_num(value: Any) -> str:
    if _is_missing(value):
        return EMPTY
    if _is_number(value):
        if isinstance(value, int) or float(value).is_integer():
            return str(int(value))
        return f"{value:.2f}"
    return str(value)


def format_direction(value: Any) -> str:
    """156.4 -> "156° SSE"; non-numbers are shown as-is."""
    if _is_missing(value):
        return EMPTY
    if not _is_number(value):
        return str(value)
    deg = round(value)
    return f"{deg}° {deg_to_compass16(deg)}"


def hhmm(instant: datetime, tz: Optional[tzinfo] = None) -> str:
    local = instant.astimezone(tz) if tz is not None else instant
    return local.strftime("%H:%M")


def ddmm_hhmm(instant: datetime, tz: Optional[tzinfo] = None) -> str:
    local = instant.astimezone(tz) if tz is not None else instant
    return local.strftime("%d/%m %H:%M")


def is_multi_day(records: Sequence[Any], tz: Optional[tzinfo] = None) -> bool:
    """True when the first and last timed records fall on different local days."""
    times = [r.time for r in records if r.time is not None]
    if len(times) < 2:
        return False
    first, last = times[0], times[-1]
    if tz is not None:
        first, last = first.astimezone(tz), last.astimezone(tz)
    return first.date() != last.date()


def observation_chart_points(records: Iterable[CanonicalObservation]) -> List[Dict[str, Any]]:
    return [
        {"t": epoch_ms(r.time), "hs": r.hs, "tp": r.tp}
        for r in records
        if r.time is not None
    ]


def tide_chart_points(records: Iterable[CanonicalTideEvent]) -> List[Dict[str, Any]]:
    points = []
    for r in records:
        if r.time is None:
            continue
        point = r.to_dict()
        points.append({"t": point["t"], "height": point["height"], "type": point["type"]})
    return points


def tide_extremes(records: Iterable[CanonicalTideEvent]) -> List[CanonicalTideEvent]:
    return [r for r in records if r.time is not None and r.type]


def upcoming_extremes(
    records: Iterable[CanonicalTideEvent],
    now: datetime,
    limit: int = 2,
) -> List[CanonicalTideEvent]:
    """Next typed tide events at or after `now`."""
    upcoming = [r for r in tide_extremes(records) if r.time >= now]
    return upcoming[:limit]


def observation_row(record: CanonicalObservation, tz: Optional[tzinfo] = None) -> List[str]:
    """One table row: time, hs, tp, dp, sst, air, ws, wd."""
    return [
        ddmm_hhmm(record.time, tz) if record.time is not None else EMPTY,
        fmt_num(record.hs),
        fmt_num(record.tp),
        format_direction(record.dp),
        fmt_num(record.sst),
        fmt_num(record.air),
        fmt_num(record.ws),
        format_direction(record.wd),
    ]


def tide_row(record: CanonicalTideEvent, tz: Optional[tzinfo] = None) -> List[str]:
    kind = record.to_dict()["type"]
    return [
        ddmm_hhmm(record.time, tz) if record.time is not None else EMPTY,
        fmt_num(record.height),
        kind or EMPTY,
    ]


def pick_summary_source(summary: Any) -> Dict[str, Any]:
    """
    Choose the object to display in the summary grid.

    The summary itself when it has at least three scalar entries, otherwise
    the first nested object with at least three keys.
    """
    if not isinstance(summary, Mapping):
        return {}
    flat = [v for v in summary.values() if not isinstance(v, (Mapping, list))]
    if len(flat) >= 3:
        return dict(summary)
    for value in summary.values():
        if isinstance(value, Mapping) and len(value) >= 3:
            return dict(value)
    return dict(summary)


def format_summary_value(key: str, value: Any) -> str:
    if _is_missing(value):
        return EMPTY
    if key in SUMMARY_DIRECTION_KEYS and _is_number(value):
        return format_direction(value)
    if _is_number(value):
        unit = SUMMARY_UNITS.get(key)
        num = fmt_num(value)
        return f"{num} {unit}" if unit else num
    return str(value)


def summary_fields(summary: Any) -> List[Dict[str, Any]]:
    source = pick_summary_source(summary)
    return [
        {
            "key": key,
            "label": SUMMARY_LABELS.get(key, key),
            "value": None if _is_missing(value) else value,
            "display": format_summary_value(key, value),
        }
        for key, value in source.items()
    ]
