"""
Deduplicating merge of canonical time-series records.

Rows are grouped by their instant truncated to the second. The first row
of a group (in chronological order) seeds the output entry; later rows only
fill fields that are still None. Rows without a usable time are kept as-is
under a synthetic key and never merged.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Dict, Iterable, List, TypeVar

from core.time_parser import dedup_key

logger = logging.getLogger("merger")

T = TypeVar("T")


def _sort_key(record) -> float:
    instant = record.time
    return instant.timestamp() if instant is not None else 0.0


def _fill_missing(current: T, duplicate: T, key: str) -> T:
    updates = {}
    for field in dataclasses.fields(current):
        if field.name == "time":
            continue
        have = getattr(current, field.name)
        other = getattr(duplicate, field.name)
        if have is None and other is not None:
            updates[field.name] = other
        elif have is not None and other is not None and have != other:
            logger.debug(f"Conflicting {field.name} at {key}: keeping {have!r}, ignoring {other!r}")
    return dataclasses.replace(current, **updates) if updates else current


def merge_records(records: Iterable[T]) -> List[T]:
    """
    Return one record per distinct second, ascending by time.

    Works on any dataclass with a `time` attribute (aware datetime or None).
    Untimed rows sort as epoch 0 and each receives its own `row-<n>` key.
    """
    ordered = sorted(records, key=_sort_key)
    merged: Dict[str, T] = {}
    for index, record in enumerate(ordered):
        if record.time is None:
            merged[f"row-{index}"] = record
            continue
        key = dedup_key(record.time)
        current = merged.get(key)
        merged[key] = record if current is None else _fill_missing(current, record, key)
    return list(merged.values())
