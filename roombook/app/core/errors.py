"""Domain errors raised by the reservation core.

Every error carries a message that is safe to show to the requester. Storage
failures deliberately hide the underlying cause.
"""


class ReservationError(Exception):
    """Base class for failures of a reservation operation."""

    status_code: int = 400
    default_message = "The reservation request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ReservationError):
    status_code = 422
    default_message = "Invalid reservation request"


class CapacityError(ReservationError):
    status_code = 422
    default_message = "Party size exceeds the room capacity"


class ConflictError(ReservationError):
    status_code = 409
    default_message = "This room is already booked for part of the selected time. Please pick another slot."


class ExpiredError(ReservationError):
    status_code = 410
    default_message = "This hold is no longer available. Please book the slot again."


class AlreadyDecidedError(ReservationError):
    """The reservation already reached a terminal state."""

    status_code = 409
    default_message = "This reservation has already been confirmed"

    def __init__(self, current_status: str, message: str | None = None) -> None:
        self.current_status = current_status
        if current_status == "cancelled":
            # Callers cannot tell an expired hold from a cancelled one.
            self.status_code = ExpiredError.status_code
            message = message or ExpiredError.default_message
        super().__init__(message)


class NotFoundError(ReservationError):
    status_code = 404
    default_message = "Reservation not found"


class NotOwnerError(ReservationError):
    status_code = 403
    default_message = "This reservation belongs to another user"


class StorageError(ReservationError):
    """Transaction or connectivity failure. No state change occurred."""

    status_code = 503
    default_message = "The booking service is temporarily unavailable. Please try again later."
