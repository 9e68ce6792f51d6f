"""
Booking time policy.

Every temporal validity rule lives here so the availability engine (which must
only produce bookable blocks) and the reservation path (which must reject
anything else) agree on what "valid" means.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

GRANULARITY_MINUTES = 30
ALLOWED_MINUTES = (0, 30)

MIN_DURATION_HOURS = GRANULARITY_MINUTES / 60
DEFAULT_MAX_DURATION_HOURS = 8
DEFAULT_MAX_ADVANCE_DAYS = 30
DEFAULT_PENDING_EXPIRATION_HOURS = 24
DEFAULT_CANCEL_CUTOFF_HOURS = 12
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0

_GRANULARITY = timedelta(minutes=GRANULARITY_MINUTES)


@dataclass(frozen=True)
class BookingPolicy:
    max_duration_hours: float = DEFAULT_MAX_DURATION_HOURS
    max_advance_days: int = DEFAULT_MAX_ADVANCE_DAYS
    pending_expiration_hours: float = DEFAULT_PENDING_EXPIRATION_HOURS
    cancel_cutoff_hours: float = DEFAULT_CANCEL_CUTOFF_HOURS
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS

    @classmethod
    def from_config(cls, config) -> "BookingPolicy":
        return cls(
            max_duration_hours=float(config.get("MAX_BOOKING_DURATION_HOURS", DEFAULT_MAX_DURATION_HOURS)),
            max_advance_days=int(config.get("MAX_ADVANCE_BOOKING_DAYS", DEFAULT_MAX_ADVANCE_DAYS)),
            pending_expiration_hours=float(
                config.get("PENDING_BOOKING_EXPIRATION_HOURS", DEFAULT_PENDING_EXPIRATION_HOURS)
            ),
            cancel_cutoff_hours=float(config.get("CANCEL_CUTOFF_HOURS", DEFAULT_CANCEL_CUTOFF_HOURS)),
            lock_timeout_seconds=float(
                config.get("BOOKING_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS)
            ),
        )

    def with_overrides(self, **overrides) -> "BookingPolicy":
        """Copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


class Violation(NamedTuple):
    rule: str
    message: str


@dataclass(frozen=True)
class RangeValidation:
    valid: bool
    errors: List[Violation] = field(default_factory=list)


def is_aligned_time(t: datetime) -> bool:
    return t.minute in ALLOWED_MINUTES and t.second == 0 and t.microsecond == 0


def is_valid_duration(hours, max_hours=DEFAULT_MAX_DURATION_HOURS) -> bool:
    if isinstance(hours, bool) or not isinstance(hours, (int, float)):
        return False
    if hours != hours:  # NaN
        return False
    if hours < MIN_DURATION_HOURS or hours > max_hours:
        return False
    return float(hours / MIN_DURATION_HOURS).is_integer()


def is_within_advance_window(start: datetime, max_days=DEFAULT_MAX_ADVANCE_DAYS, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return now < start <= now + timedelta(days=max_days)


def round_down_to_granularity(t: datetime) -> datetime:
    minute = (t.minute // GRANULARITY_MINUTES) * GRANULARITY_MINUTES
    return t.replace(minute=minute, second=0, microsecond=0)


def round_up_to_granularity(t: datetime) -> datetime:
    down = round_down_to_granularity(t)
    if down == t:
        return t
    return down + _GRANULARITY


def duration_hours(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def validate_range(
    start: datetime,
    end: datetime,
    max_duration_hours=None,
    max_advance_days=None,
    now: Optional[datetime] = None,
) -> RangeValidation:
    """
    Check a requested [start, end) against every rule and report all
    violations together. Never raises.
    """
    max_duration_hours = DEFAULT_MAX_DURATION_HOURS if max_duration_hours is None else max_duration_hours
    max_advance_days = DEFAULT_MAX_ADVANCE_DAYS if max_advance_days is None else max_advance_days
    errors = []

    if not isinstance(start, datetime) or not isinstance(end, datetime):
        return RangeValidation(False, [Violation("type", "Start and end must be datetimes")])

    if not is_aligned_time(start):
        errors.append(Violation("start_alignment", "Start time must be on the hour or half-hour (e.g. 10:00 or 10:30)"))
    if not is_aligned_time(end):
        errors.append(Violation("end_alignment", "End time must be on the hour or half-hour (e.g. 10:00 or 10:30)"))

    if end <= start:
        errors.append(Violation("order", "End time must be after start time"))
    elif not is_valid_duration(duration_hours(start, end), max_duration_hours):
        errors.append(Violation(
            "duration",
            f"Duration must be between {MIN_DURATION_HOURS} and {max_duration_hours} hours, in 30-minute increments",
        ))

    if not is_within_advance_window(start, max_advance_days, now=now):
        errors.append(Violation(
            "advance_window",
            f"Booking must start in the future and within {max_advance_days} days",
        ))

    return RangeValidation(not errors, errors)


def resolve_policy(court, base: BookingPolicy) -> BookingPolicy:
    """
    Apply stored overrides for a court: court-level beats facility-level,
    which beats the app defaults in `base`.
    """
    from models.booking_policy import BookingPolicy as PolicyRow

    rows = (
        PolicyRow.query
        .filter(
            PolicyRow.facility_id == court.facility_id,
            PolicyRow.is_active.is_(True),
            (PolicyRow.court_id == court.id) | (PolicyRow.court_id.is_(None)),
        )
        .all()
    )
    # facility scope first so the court scope wins
    rows.sort(key=lambda r: r.court_id is not None)

    policy = base
    for row in rows:
        policy = policy.with_overrides(
            max_advance_days=row.max_advance_booking_days,
            max_duration_hours=row.max_booking_duration_hours,
            pending_expiration_hours=row.pending_expiration_hours,
            cancel_cutoff_hours=row.cancel_cutoff_hours,
        )
    return policy
