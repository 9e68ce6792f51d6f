import logging
import threading
from contextlib import contextmanager

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from models import db
from models.court import Court
from services.errors import LockTimeoutError, NotFoundError

logger = logging.getLogger(__name__)


class CourtLockRegistry:
    """
    One mutex per court id. Serialises check-and-reserve within this
    process; the row lock taken in `court_timeline` covers other processes
    when the database supports SELECT ... FOR UPDATE.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, court_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(court_id)
            if lock is None:
                lock = self._locks[court_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, court_id: int, timeout: float):
        lock = self._lock_for(court_id)
        if not lock.acquire(timeout=max(timeout, 0)):
            logger.warning("court %s lock wait exceeded %.2fs", court_id, timeout)
            raise LockTimeoutError()
        try:
            yield
        finally:
            lock.release()


court_locks = CourtLockRegistry()

# SQLSTATE lock_not_available
_PG_LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_contention(exc: OperationalError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == _PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(orig).lower()


def _lock_court_row(court_id: int, timeout: float) -> Court:
    session = db.session
    if session.get_bind().dialect.name == "postgresql":
        # scoped to the current transaction
        session.execute(text(f"SET LOCAL lock_timeout = {int(timeout * 1000)}"))
    stmt = (
        select(Court)
        .where(Court.id == court_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    try:
        return session.execute(stmt).scalar_one_or_none()
    except OperationalError as e:
        session.rollback()
        if not _is_lock_contention(e):
            raise
        logger.warning("court %s row lock not acquired within %.2fs", court_id, timeout)
        raise LockTimeoutError()


@contextmanager
def court_timeline(court_id: int, timeout: float, registry: CourtLockRegistry = None, require_active: bool = False):
    """
    Exclusive access to one court's booking timeline for the duration of the
    block. Starts from a clean transaction and yields the locked Court row.
    Any exception rolls the session back before the lock is released;
    committing is the caller's job.
    """
    registry = registry or court_locks
    with registry.hold(court_id, timeout):
        # drop anything read before we held the lock
        db.session.rollback()
        db.session.expire_all()
        try:
            court = _lock_court_row(court_id, timeout)
            if court is None or (require_active and not court.is_active):
                raise NotFoundError("Court not found")
            yield court
        except Exception:
            db.session.rollback()
            raise
