"""
Availability rule engine.

Open time for a court on a date = union of the weekday's active rules, minus
occupying bookings and administrative blocks, clipped to the bookable horizon
and snapped inward to the 30-minute grid.

The computation is a pure function of (rules, occupied intervals, now). The
read path (`get_availability`) and the reservation re-check both go through
`open_intervals`, so they cannot disagree on what is open.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, NamedTuple, Optional

from flask import current_app
from sqlalchemy import and_, or_

from models import db
from models.availability_rule import AvailabilityRule
from models.blocked_range import BlockedTimeRange, BLOCK_DATE_RANGE, BLOCK_ONE_TIME, BLOCK_RECURRING
from models.booking import Booking, ACTIVE_STATUSES, PENDING
from models.court import Court
from services.errors import InvalidRangeError, NotFoundError
from services.policy import (
    GRANULARITY_MINUTES,
    BookingPolicy,
    Violation,
    resolve_policy,
    round_down_to_granularity,
    round_up_to_granularity,
)

logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 31
_ONE_DAY = timedelta(days=1)
_GRANULARITY = timedelta(minutes=GRANULARITY_MINUTES)


def day_of_week(day: date) -> int:
    """0=Sunday ... 6=Saturday."""
    return (day.weekday() + 1) % 7


class RuleWindow(NamedTuple):
    day_of_week: int
    start_minute: int
    end_minute: int
    is_active: bool = True


class Occupied(NamedTuple):
    start: datetime
    end: datetime
    source: str  # "booking" or "block"
    ref_id: Optional[int] = None


@dataclass(frozen=True)
class TimeBlock:
    court_id: int
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end

    def to_dict(self):
        return {
            "court_id": self.court_id,
            "start_time": self.start.isoformat(),
            "end_time": self.end.isoformat(),
            "duration_minutes": self.duration_minutes,
        }


@dataclass
class DaySnapshot:
    court_id: int
    day: date
    rules: list = field(default_factory=list)
    occupied: List[Occupied] = field(default_factory=list)


def merge_intervals(intervals):
    """Sort and union overlapping or touching [start, end) intervals."""
    merged = []
    for start, end in sorted((s, e) for s, e in intervals if e > s):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def subtract_intervals(open_intervals, occupied):
    """
    Remove every occupied interval from the open ones. Each open interval
    yields zero, one or two pieces per overlapping occupation.
    """
    result = []
    taken = merge_intervals(occupied)
    for start, end in merge_intervals(open_intervals):
        cursor = start
        for o_start, o_end in taken:
            if o_end <= cursor:
                continue
            if o_start >= end:
                break
            if o_start > cursor:
                result.append((cursor, o_start))
            cursor = max(cursor, o_end)
            if cursor >= end:
                break
        if cursor < end:
            result.append((cursor, end))
    return result


def bookable_horizon(now: datetime, max_advance_days: int):
    """Earliest and latest instants a block may occupy, grid-aligned."""
    earliest = round_up_to_granularity(now)
    if earliest <= now:
        earliest += _GRANULARITY
    latest = round_down_to_granularity(now + timedelta(days=max_advance_days))
    return earliest, latest


def open_intervals(day: date, rules, occupied, now: Optional[datetime] = None, max_advance_days: Optional[int] = None):
    """
    Open [start, end) datetime intervals for `day`.

    `rules` are objects with day_of_week/start_minute/end_minute/is_active;
    `occupied` is an iterable of (start, end, ...) tuples. When `now` is
    given the result is clipped to what could actually be reserved.
    """
    midnight = datetime.combine(day, time.min)
    dow = day_of_week(day)

    nominal = []
    for rule in rules:
        if not rule.is_active or rule.day_of_week != dow:
            continue
        if rule.end_minute <= rule.start_minute:
            continue
        nominal.append((
            midnight + timedelta(minutes=rule.start_minute),
            midnight + timedelta(minutes=rule.end_minute),
        ))

    free = subtract_intervals(nominal, [(o[0], o[1]) for o in occupied])

    if now is not None:
        earliest, latest = bookable_horizon(
            now, max_advance_days if max_advance_days is not None else BookingPolicy().max_advance_days
        )
        free = [(max(s, earliest), min(e, latest)) for s, e in free]

    snapped = []
    for s, e in free:
        s, e = round_up_to_granularity(s), round_down_to_granularity(e)
        if e > s:
            snapped.append((s, e))
    return snapped


def find_conflict(occupied, start: datetime, end: datetime) -> Optional[Occupied]:
    """Earliest occupied interval overlapping [start, end)."""
    hits = [o for o in occupied if o.start < end and o.end > start]
    return min(hits, key=lambda o: o.start) if hits else None


class BlockSequence:
    """
    Restartable, lazily discretised view over open intervals.
    Iterating twice yields the same blocks in ascending order.
    """

    def __init__(self, court_id: int, intervals, block_minutes: Optional[int] = None):
        self.court_id = court_id
        self.intervals = sorted(intervals)
        self.block_minutes = block_minutes

    def __iter__(self):
        if not self.block_minutes:
            for s, e in self.intervals:
                yield TimeBlock(self.court_id, s, e)
            return
        step = timedelta(minutes=self.block_minutes)
        for s, e in self.intervals:
            cursor = s
            while cursor + step <= e:
                yield TimeBlock(self.court_id, cursor, cursor + step)
                cursor += step

    def __bool__(self):
        return bool(self.intervals)

    def ranges(self):
        return [TimeBlock(self.court_id, s, e) for s, e in self.intervals]

    def contains(self, start: datetime, end: datetime) -> bool:
        return any(s <= start and end <= e for s, e in self.intervals)


def _occupies(booking: Booking, now: datetime) -> bool:
    if booking.status not in ACTIVE_STATUSES:
        return False
    # lapsed pending holds stop blocking before the sweep gets to them
    if booking.status == PENDING and booking.expires_at is not None and booking.expires_at <= now:
        return False
    return True


def load_day_snapshot(court: Court, day: date, now: Optional[datetime] = None) -> DaySnapshot:
    now = now or datetime.now()
    dow = day_of_week(day)
    day_start = datetime.combine(day, time.min)
    day_end = day_start + _ONE_DAY

    rules = (
        AvailabilityRule.query
        .filter_by(court_id=court.id, day_of_week=dow, is_active=True)
        .order_by(AvailabilityRule.start_minute.asc())
        .all()
    )

    bookings = (
        Booking.query
        .filter(
            Booking.court_id == court.id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time < day_end,
            Booking.end_time > day_start,
        )
        .order_by(Booking.start_time.asc())
        .all()
    )
    occupied = [
        Occupied(b.start_time, b.end_time, "booking", b.id)
        for b in bookings
        if _occupies(b, now)
    ]

    blocks = (
        BlockedTimeRange.query
        .filter(
            BlockedTimeRange.facility_id == court.facility_id,
            BlockedTimeRange.is_active.is_(True),
            or_(BlockedTimeRange.court_id == court.id, BlockedTimeRange.court_id.is_(None)),
            or_(
                and_(BlockedTimeRange.block_type == BLOCK_ONE_TIME, BlockedTimeRange.start_date == day),
                and_(BlockedTimeRange.block_type == BLOCK_RECURRING, BlockedTimeRange.day_of_week == dow),
                and_(
                    BlockedTimeRange.block_type == BLOCK_DATE_RANGE,
                    BlockedTimeRange.start_date <= day,
                    BlockedTimeRange.end_date >= day,
                ),
            ),
        )
        .all()
    )
    for blk in blocks:
        if blk.block_type == BLOCK_DATE_RANGE or blk.start_minute is None or blk.end_minute is None:
            occupied.append(Occupied(day_start, day_end, "block", blk.id))
        else:
            occupied.append(Occupied(
                day_start + timedelta(minutes=blk.start_minute),
                day_start + timedelta(minutes=blk.end_minute),
                "block",
                blk.id,
            ))

    occupied.sort(key=lambda o: o.start)
    return DaySnapshot(court_id=court.id, day=day, rules=rules, occupied=occupied)


def get_active_court(court_id: int) -> Court:
    court = db.session.get(Court, court_id)
    if not court or not court.is_active:
        raise NotFoundError("Court not found")
    return court


def get_availability(
    court_id: int,
    date_from: date,
    date_to: date,
    block_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
    policy: Optional[BookingPolicy] = None,
) -> BlockSequence:
    """
    Open blocks for a court over [date_from, date_to] inclusive.
    Read-only; never takes the reservation lock.

    Without `block_minutes` each block is a whole open range, which may be
    longer than the court's maximum booking duration. Any aligned sub-range
    within the duration limit is reservable. With `block_minutes` every block
    is itself reservable.
    """
    if date_to < date_from:
        raise InvalidRangeError([Violation("order", "date_to must not be before date_from")])
    if (date_to - date_from).days + 1 > MAX_RANGE_DAYS:
        raise InvalidRangeError([Violation("span", f"Date range may cover at most {MAX_RANGE_DAYS} days")])
    if block_minutes is not None and (block_minutes <= 0 or block_minutes % GRANULARITY_MINUTES):
        raise InvalidRangeError([
            Violation("block_minutes", f"block_minutes must be a positive multiple of {GRANULARITY_MINUTES}")
        ])

    court = get_active_court(court_id)
    now = now or datetime.now()
    policy = resolve_policy(court, policy or BookingPolicy.from_config(current_app.config))
    if block_minutes is not None and block_minutes > policy.max_duration_hours * 60:
        raise InvalidRangeError([
            Violation("block_minutes", f"block_minutes may not exceed {policy.max_duration_hours:g} hours for this court")
        ])

    intervals = []
    day = date_from
    while day <= date_to:
        snapshot = load_day_snapshot(court, day, now=now)
        intervals.extend(open_intervals(day, snapshot.rules, snapshot.occupied, now, policy.max_advance_days))
        day += _ONE_DAY

    logger.debug("court %s availability %s..%s: %d open ranges", court_id, date_from, date_to, len(intervals))
    return BlockSequence(court.id, intervals, block_minutes)
