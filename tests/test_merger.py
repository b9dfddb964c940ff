from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.merger import merge_records
from core.models import CanonicalObservation, CanonicalTideEvent, TideType

UTC = timezone.utc
T0 = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)


def _obs(offset_s=0.0, **fields):
    return CanonicalObservation(time=T0 + timedelta(seconds=offset_s), **fields)


def test_complementary_duplicates_are_filled():
    a = _obs(hs=1.2, tp=None)
    b = _obs(hs=None, tp=8.0)
    merged = merge_records([a, b])
    assert len(merged) == 1
    assert merged[0].hs == 1.2
    assert merged[0].tp == 8.0


def test_output_is_sorted_ascending():
    later = _obs(5, hs=1.0)
    earlier = _obs(0, hs=2.0)
    merged = merge_records([later, earlier])
    assert [m.hs for m in merged] == [2.0, 1.0]
    assert merged[0].time < merged[1].time


def test_sub_second_differences_share_a_key():
    merged = merge_records([_obs(0.2, hs=1.0), _obs(0.9, tp=7.0)])
    assert len(merged) == 1
    assert (merged[0].hs, merged[0].tp) == (1.0, 7.0)


def test_first_non_null_value_wins_on_conflict():
    merged = merge_records([_obs(hs=1.0), _obs(hs=3.0, dp=180.0)])
    assert len(merged) == 1
    assert merged[0].hs == 1.0
    assert merged[0].dp == 180.0


def test_same_instant_in_different_zones_merges():
    from zoneinfo import ZoneInfo

    local = CanonicalObservation(time=T0.astimezone(ZoneInfo("America/Sao_Paulo")), sst=23.0)
    merged = merge_records([_obs(hs=1.0), local])
    assert len(merged) == 1
    assert merged[0].sst == 23.0


def test_merge_is_idempotent():
    rows = [_obs(3, hs=1.0), _obs(0, tp=9.0), _obs(0, hs=0.8), _obs(3, wd=90.0)]
    once = merge_records(rows)
    assert merge_records(once) == once


def test_untimed_rows_are_kept_and_never_merged():
    untimed_a = CanonicalObservation(time=None, hs=1.0)
    untimed_b = CanonicalObservation(time=None, hs=2.0)
    merged = merge_records([_obs(hs=0.5), untimed_a, untimed_b])
    assert len(merged) == 3
    assert merged[0] is untimed_a
    assert merged[1] is untimed_b
    assert merged[2].hs == 0.5


def test_inputs_are_not_mutated():
    a = _obs(hs=None)
    b = _obs(hs=1.5)
    merge_records([a, b])
    assert a.hs is None


def test_tide_events_merge_the_same_way():
    a = CanonicalTideEvent(time=T0, height=1.1, type=None)
    b = CanonicalTideEvent(time=T0, height=None, type=TideType.HIGH)
    merged = merge_records([b, a])
    assert len(merged) == 1
    assert merged[0].height == 1.1
    assert merged[0].type is TideType.HIGH


def test_empty_input():
    assert merge_records([]) == []
