class BookingError(Exception):
    """
    Base for every error the booking core raises.
    `kind` is stable and machine readable; `detail` is for humans.
    """
    kind = "BOOKING_ERROR"
    status_code = 400

    def __init__(self, detail: str, **extra):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self):
        body = {"error": self.kind, "detail": self.detail}
        body.update(self.extra)
        return body


class InvalidRangeError(BookingError):
    kind = "INVALID_RANGE"
    status_code = 400

    def __init__(self, violations):
        self.violations = list(violations)
        detail = "; ".join(v.message for v in self.violations) or "Invalid time range"
        super().__init__(
            detail,
            violations=[{"rule": v.rule, "message": v.message} for v in self.violations],
        )


class SlotConflictError(BookingError):
    kind = "SLOT_CONFLICT"
    status_code = 409

    def __init__(self, detail: str, conflict_start=None, conflict_end=None):
        self.conflict_start = conflict_start
        self.conflict_end = conflict_end
        conflict = None
        if conflict_start is not None and conflict_end is not None:
            conflict = {"start_time": conflict_start.isoformat(), "end_time": conflict_end.isoformat()}
        super().__init__(detail, conflict=conflict)


class LockTimeoutError(BookingError):
    kind = "LOCK_TIMEOUT"
    status_code = 503

    def __init__(self, detail: str = "Court is busy, retry shortly"):
        super().__init__(detail, retryable=True)


class StateError(BookingError):
    kind = "INVALID_STATE"
    status_code = 409

    def __init__(self, current: str, requested: str, detail: str = None):
        self.current = current
        self.requested = requested
        super().__init__(
            detail or f"Cannot move booking from {current} to {requested}",
            current=current,
            requested=requested,
        )


class CancellationWindowError(StateError):
    kind = "CANCELLATION_WINDOW_CLOSED"


class PaymentMismatchError(StateError):
    kind = "PAYMENT_AMOUNT_MISMATCH"


class ForbiddenError(BookingError):
    kind = "FORBIDDEN"
    status_code = 403


class NotFoundError(BookingError):
    kind = "NOT_FOUND"
    status_code = 404
