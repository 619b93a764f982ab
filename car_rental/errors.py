"""Error taxonomy shared by the booking and reporting layers."""


class RentalError(RuntimeError):
    """Base class for errors that are rendered back to the caller."""

    status_code = 500
    kind = 'error'

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {'error': self.message, 'kind': self.kind}
        payload.update(self.details)
        return payload


class ValidationError(RentalError):
    """Raised when input is missing, malformed or out of range."""

    status_code = 400
    kind = 'validation'


class NotFoundError(RentalError):
    """Raised when a referenced car or booking does not exist."""

    status_code = 404
    kind = 'not_found'


class ConflictError(RentalError):
    """Raised when the requested dates overlap an occupying booking."""

    status_code = 409
    kind = 'conflict'

    def __init__(self, message: str, booking_ids=()) -> None:
        super().__init__(message, bookingIds=list(booking_ids))
        self.booking_ids = list(booking_ids)


class StoreError(RentalError):
    """Raised when the database fails for infrastructural reasons.

    The message never includes the underlying exception, which is logged
    where it is caught.
    """

    status_code = 500
    kind = 'server'


class AuthorizationError(RentalError):
    status_code = 401
    kind = 'unauthorized'


class ForbiddenError(AuthorizationError):
    status_code = 403
    kind = 'forbidden'
