from datetime import datetime, timedelta

import pytest

from models.booking_policy import BookingPolicy as PolicyRow
from models import db
from services.policy import (
    BookingPolicy,
    is_aligned_time,
    is_valid_duration,
    is_within_advance_window,
    resolve_policy,
    round_down_to_granularity,
    round_up_to_granularity,
    validate_range,
)

NOW = datetime(2026, 10, 17, 8, 0)


@pytest.mark.parametrize("minute,second,expected", [
    (0, 0, True),
    (30, 0, True),
    (15, 0, False),
    (45, 0, False),
    (0, 1, False),
])
def test_is_aligned_time(minute, second, expected):
    assert is_aligned_time(datetime(2026, 10, 19, 10, minute, second)) is expected


@pytest.mark.parametrize("hours,expected", [
    (0.5, True),
    (1, True),
    (2.5, True),
    (8, True),
    (0, False),
    (0.25, False),
    (1.25, False),
    (8.5, False),
    (-1, False),
    ("2", False),
    (float("nan"), False),
])
def test_is_valid_duration(hours, expected):
    assert is_valid_duration(hours) is expected


def test_is_valid_duration_respects_custom_max():
    assert is_valid_duration(3, max_hours=2) is False
    assert is_valid_duration(2, max_hours=2) is True


def test_advance_window_bounds():
    assert is_within_advance_window(NOW, 30, now=NOW) is False
    assert is_within_advance_window(NOW - timedelta(hours=1), 30, now=NOW) is False
    assert is_within_advance_window(NOW + timedelta(minutes=30), 30, now=NOW) is True
    assert is_within_advance_window(NOW + timedelta(days=30), 30, now=NOW) is True
    assert is_within_advance_window(NOW + timedelta(days=30, minutes=30), 30, now=NOW) is False


def test_rounding():
    t = datetime(2026, 10, 19, 10, 10, 5)
    assert round_up_to_granularity(t) == datetime(2026, 10, 19, 10, 30)
    assert round_down_to_granularity(t) == datetime(2026, 10, 19, 10, 0)

    aligned = datetime(2026, 10, 19, 10, 30)
    assert round_up_to_granularity(aligned) == aligned
    assert round_down_to_granularity(aligned) == aligned

    late = datetime(2026, 10, 19, 23, 45)
    assert round_up_to_granularity(late) == datetime(2026, 10, 20, 0, 0)


def test_validate_range_accepts_good_request():
    start = datetime(2026, 10, 19, 10, 0)
    result = validate_range(start, start + timedelta(hours=1), now=NOW)
    assert result.valid
    assert result.errors == []


def test_validate_range_collects_every_violation():
    start = datetime(2026, 10, 19, 10, 15)
    result = validate_range(start, start - timedelta(hours=1), now=NOW)
    rules = {v.rule for v in result.errors}
    assert not result.valid
    assert {"start_alignment", "end_alignment", "order"} <= rules


def test_validate_range_duration_and_window():
    start = datetime(2026, 12, 1, 10, 0)
    result = validate_range(start, start + timedelta(hours=9), now=NOW)
    assert {v.rule for v in result.errors} == {"duration", "advance_window"}

    result = validate_range(start, start + timedelta(hours=9), max_duration_hours=10, max_advance_days=60, now=NOW)
    assert result.valid


def test_validate_range_rejects_non_datetimes():
    result = validate_range("10:00", "11:00", now=NOW)
    assert not result.valid
    assert result.errors[0].rule == "type"


def test_policy_from_config_and_overrides():
    policy = BookingPolicy.from_config({"MAX_BOOKING_DURATION_HOURS": 4, "CANCEL_CUTOFF_HOURS": 2})
    assert policy.max_duration_hours == 4
    assert policy.cancel_cutoff_hours == 2
    assert policy.max_advance_days == 30

    changed = policy.with_overrides(max_advance_days=7, max_duration_hours=None)
    assert changed.max_advance_days == 7
    assert changed.max_duration_hours == 4
    assert policy.max_advance_days == 30


def test_resolve_policy_court_beats_facility(court):
    db.session.add(PolicyRow(facility_id=court.facility_id, court_id=None, max_advance_booking_days=14, cancel_cutoff_hours=6))
    db.session.add(PolicyRow(facility_id=court.facility_id, court_id=court.id, max_advance_booking_days=7))
    db.session.commit()

    policy = resolve_policy(court, BookingPolicy())
    assert policy.max_advance_days == 7
    assert policy.cancel_cutoff_hours == 6
    assert policy.max_duration_hours == BookingPolicy().max_duration_hours
