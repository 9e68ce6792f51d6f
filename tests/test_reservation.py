import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from models import db
from models.booking import Booking, CANCELLED, CONFIRMED, PENDING
from services.availability import get_availability
from services.errors import (
    CancellationWindowError,
    ForbiddenError,
    InvalidRangeError,
    LockTimeoutError,
    NotFoundError,
    SlotConflictError,
    StateError,
)
from services.locks import CourtLockRegistry
from services.policy import BookingPolicy
from services.reservation import PENDING_EXPIRED_REASON, SlotReservationManager, quote_price


@pytest.fixture
def manager(app):
    return SlotReservationManager()


def test_reserve_creates_pending_booking_with_price_and_hold(manager, court, rules, player, now, at):
    booking = manager.reserve(court.id, player.id, at(10), at(11, 30), now=now)

    assert booking.id is not None
    assert booking.status == PENDING
    assert booking.final_price == 1500
    assert booking.expires_at == now + timedelta(hours=24)
    assert booking.start_time == at(10)
    assert booking.end_time == at(11, 30)


def test_quote_price_rounds_to_smallest_unit(court, at):
    court.price_per_hour = 999
    assert quote_price(court, at(10), at(10, 30)) == 500


def test_overlapping_request_names_the_conflict(manager, court, rules, player, other_player, now, at):
    manager.reserve(court.id, player.id, at(10), at(11), now=now)

    with pytest.raises(SlotConflictError) as exc:
        manager.reserve(court.id, other_player.id, at(10, 30), at(11, 30), now=now)

    assert exc.value.conflict_start == at(10)
    assert exc.value.conflict_end == at(11)
    assert exc.value.to_dict()["conflict"] == {"start_time": at(10).isoformat(), "end_time": at(11).isoformat()}
    assert Booking.query.count() == 1


def test_adjacent_booking_succeeds(manager, court, rules, player, other_player, now, at):
    manager.reserve(court.id, player.id, at(10), at(11), now=now)
    booking = manager.reserve(court.id, other_player.id, at(11), at(12), now=now)
    assert booking.status == PENDING


def test_outside_opening_hours_is_a_conflict_without_interval(manager, court, rules, player, now, at):
    with pytest.raises(SlotConflictError) as exc:
        manager.reserve(court.id, player.id, at(17, 30), at(18, 30), now=now)
    assert exc.value.to_dict()["conflict"] is None


def test_unaligned_start_rejected_before_locking(court, rules, player, now, at):
    registry = CourtLockRegistry()
    manager = SlotReservationManager(locks=registry)

    # lock held: validation must fail first, not time out
    with registry.hold(court.id, 1):
        with pytest.raises(InvalidRangeError) as exc:
            manager.reserve(court.id, player.id, at(10, 15), at(11, 15), now=now)

    assert {v.rule for v in exc.value.violations} == {"start_alignment", "end_alignment"}


def test_duration_override_applies(manager, court, rules, player, now, at):
    with pytest.raises(InvalidRangeError):
        manager.reserve(court.id, player.id, at(9), at(12), now=now, max_duration_hours=2)


def test_unknown_or_inactive_court(manager, court, rules, player, now, at):
    with pytest.raises(NotFoundError):
        manager.reserve(court.id + 50, player.id, at(10), at(11), now=now)

    court.is_active = False
    db.session.commit()
    with pytest.raises(NotFoundError):
        manager.reserve(court.id, player.id, at(10), at(11), now=now)


def test_lock_timeout_when_court_is_busy(court, rules, player, now, at):
    registry = CourtLockRegistry()
    manager = SlotReservationManager(policy=BookingPolicy(lock_timeout_seconds=0.05), locks=registry)
    court_id, user_id = court.id, player.id

    with registry.hold(court_id, 1):
        with pytest.raises(LockTimeoutError) as exc:
            manager.reserve(court_id, user_id, at(10), at(11), now=now)

    assert exc.value.to_dict()["retryable"] is True
    assert Booking.query.count() == 0


def test_lapsed_pending_hold_is_cancelled_and_slot_reused(manager, court, rules, player, other_player, now, at):
    first = manager.reserve(court.id, player.id, at(10), at(11), now=now)
    first_id = first.id

    later = now + timedelta(hours=25)
    second = manager.reserve(court.id, other_player.id, at(10), at(11), now=later)

    stale = db.session.get(Booking, first_id)
    assert stale.status == CANCELLED
    assert stale.cancel_reason == PENDING_EXPIRED_REASON
    assert second.status == PENDING


def test_release_frees_the_interval(manager, court, rules, player, other_player, now, at):
    booking = manager.reserve(court.id, player.id, at(10), at(11), now=now)

    released = manager.release(booking.id, player.id, reason="plans changed", now=now)
    assert released.status == CANCELLED
    assert released.cancel_reason == "plans changed"
    assert released.cancelled_at == now

    again = manager.reserve(court.id, other_player.id, at(10), at(11), now=now)
    assert again.status == PENDING
    # cancelled rows are kept
    assert Booking.query.count() == 2


def test_release_twice_is_a_state_error(manager, court, rules, player, now, at):
    booking = manager.reserve(court.id, player.id, at(10), at(11), now=now)
    manager.release(booking.id, player.id, now=now)
    with pytest.raises(StateError):
        manager.release(booking.id, player.id, now=now)


def test_release_by_stranger_forbidden(manager, court, rules, player, other_player, now, at):
    booking = manager.reserve(court.id, player.id, at(10), at(11), now=now)
    with pytest.raises(ForbiddenError):
        manager.release(booking.id, other_player.id, now=now)


def test_booker_cannot_cancel_confirmed_inside_cutoff(manager, court, rules, player, owner, now, at):
    booking = manager.reserve(court.id, player.id, at(10), at(11), now=now)
    booking.status = CONFIRMED
    db.session.commit()

    close_to_start = at(10) - timedelta(hours=6)
    with pytest.raises(CancellationWindowError):
        manager.release(booking.id, player.id, now=close_to_start)

    # facility owner is not bound by the window
    released = manager.release(booking.id, owner.id, now=close_to_start)
    assert released.status == CANCELLED
    assert released.cancel_reason == "cancelled_by_owner"


def test_booker_may_cancel_pending_inside_cutoff(manager, court, rules, player, now, at):
    booking = manager.reserve(court.id, player.id, at(10), at(11), now=now)
    released = manager.release(booking.id, player.id, now=at(9))
    assert released.status == CANCELLED


def test_concurrent_identical_requests_have_one_winner(app, court, rules, user_factory, now, at):
    court_id = court.id
    user_ids = [user_factory(f"racer{i}@example.test", "PLAYER").id for i in range(8)]
    barrier = threading.Barrier(len(user_ids), timeout=10)
    outcomes = []
    guard = threading.Lock()

    def attempt(user_id):
        with app.app_context():
            barrier.wait()
            try:
                SlotReservationManager().reserve(court_id, user_id, at(10), at(11), now=now)
                result = "ok"
            except SlotConflictError:
                result = "conflict"
            finally:
                db.session.remove()
            with guard:
                outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(uid,)) for uid in user_ids]
    for th in threads:
        th.start()
    for th in threads:
        th.join(timeout=30)

    assert sorted(outcomes) == ["conflict"] * 7 + ["ok"]
    assert Booking.query.filter_by(court_id=court_id, status=PENDING).count() == 1


def test_concurrent_overlapping_requests_never_double_book(app, court, rules, user_factory, now, at):
    court_id = court.id
    requests = [(at(10), at(11)), (at(10, 30), at(11, 30)), (at(9, 30), at(10, 30)), (at(11), at(12))]
    user_ids = [user_factory(f"overlap{i}@example.test", "PLAYER").id for i in range(len(requests))]
    barrier = threading.Barrier(len(requests), timeout=10)

    def attempt(user_id, start, end):
        with app.app_context():
            barrier.wait()
            try:
                SlotReservationManager().reserve(court_id, user_id, start, end, now=now)
            except SlotConflictError:
                pass
            finally:
                db.session.remove()

    threads = [
        threading.Thread(target=attempt, args=(uid, s, e))
        for uid, (s, e) in zip(user_ids, requests)
    ]
    for th in threads:
        th.start()
    for th in threads:
        th.join(timeout=30)

    held = Booking.query.filter_by(court_id=court_id, status=PENDING).order_by(Booking.start_time).all()
    assert held
    for a, b in zip(held, held[1:]):
        assert a.end_time <= b.start_time


def test_read_and_write_paths_agree(manager, court, rules, player, monday, now, at):
    manager.reserve(court.id, player.id, at(12), at(13), now=now)

    start = at(8)
    while start < at(19):
        end = start + timedelta(hours=1)
        offered = get_availability(court.id, monday, monday, now=now).contains(start, end)
        try:
            manager.reserve(court.id, player.id, start, end, now=now)
            reserved = True
        except SlotConflictError:
            reserved = False
        assert offered == reserved, f"{start:%H:%M}-{end:%H:%M}"
        start += timedelta(minutes=30)


def test_open_range_longer_than_max_duration_is_reservable_in_pieces(manager, court, rules, player, monday, now, at):
    whole = get_availability(court.id, monday, monday, now=now).ranges()[0]
    assert (whole.start, whole.end) == (at(9), at(18))

    with pytest.raises(InvalidRangeError):
        manager.reserve(court.id, player.id, whole.start, whole.end, now=now)

    longest = manager.reserve(court.id, player.id, at(9), at(17), now=now)
    assert longest.status == PENDING


def test_block_minutes_above_max_duration_rejected(court, rules, monday, now):
    with pytest.raises(InvalidRangeError):
        get_availability(court.id, monday, monday, block_minutes=9 * 60, now=now)


def _failing_execute(message):
    def execute(*args, **kwargs):
        raise OperationalError("SELECT ... FOR UPDATE", {}, Exception(message))
    return execute


def test_row_lock_contention_becomes_lock_timeout(manager, court, rules, player, now, at, monkeypatch):
    court_id, user_id = court.id, player.id
    monkeypatch.setattr(db.session, "execute", _failing_execute("database is locked"))

    with pytest.raises(LockTimeoutError):
        manager.reserve(court_id, user_id, at(10), at(11), now=now)


def test_other_database_errors_are_not_retryable(manager, court, rules, player, now, at, monkeypatch):
    court_id, user_id = court.id, player.id
    monkeypatch.setattr(db.session, "execute", _failing_execute("no such table: courts"))

    with pytest.raises(OperationalError):
        manager.reserve(court_id, user_id, at(10), at(11), now=now)
