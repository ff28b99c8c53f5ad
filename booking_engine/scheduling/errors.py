"""Error types raised by the scheduling engine."""


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class ParseError(SchedulingError, ValueError):
    """A time or date string could not be parsed."""


class BookingError(SchedulingError):
    """A booking attempt was rejected."""

    retryable = False


class ValidationError(BookingError):
    """Draft or candidate fields are missing or invalid."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ConflictError(BookingError):
    """The candidate overlaps a scheduled reservation in the same scope."""

    def __init__(
        self,
        reservation_id: int | None,
        overlap_start: str | None = None,
        overlap_end: str | None = None,
    ) -> None:
        if reservation_id is None:
            message = 'This time was just booked by someone else.'
        else:
            message = f'This time overlaps reservation {reservation_id} ({overlap_start}-{overlap_end}).'
        super().__init__(message)
        self.reservation_id = reservation_id
        self.overlap_start = overlap_start
        self.overlap_end = overlap_end


class PersistenceTimeoutError(BookingError):
    """The commit did not finish in time. Its outcome is unknown."""

    retryable = True


class NotFoundError(SchedulingError):
    def __init__(self, reservation_id: int) -> None:
        super().__init__(f'Reservation {reservation_id} not found.')
        self.reservation_id = reservation_id


class WorkflowError(SchedulingError):
    """An input was sent to a booking session state that does not accept it."""
