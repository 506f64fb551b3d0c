"""Error taxonomy shared by the server and the client session."""


class MessagingError(Exception):

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(MessagingError, ValueError):
    """Rejected input, raised before any round trip is made."""

    status_code = 422


class ConflictError(MessagingError):
    """A uniqueness constraint was hit (e.g. two callers created the same conversation)."""

    status_code = 409


class NotFoundError(MessagingError):

    status_code = 404


class PermissionDeniedError(MessagingError):

    status_code = 403

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message)


class PersistenceError(MessagingError):
    """The backend could not complete a read or write."""

    status_code = 503


class SubscriptionError(MessagingError):
    """The real-time channel could not be opened or was lost."""

    status_code = 503


_STATUS_ERRORS = {
    cls.status_code: cls
    for cls in (ValidationError, ConflictError, NotFoundError, PermissionDeniedError)
}


def error_for_status(status_code: int, message: str) -> MessagingError:
    """Map an HTTP error response back onto the error taxonomy."""
    if status_code == 400:
        return ValidationError(message)
    if status_code == 401:
        return PermissionDeniedError(message)
    cls = _STATUS_ERRORS.get(status_code, PersistenceError)
    return cls(message)
