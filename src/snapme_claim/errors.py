"""Exception hierarchy for the photo claim core."""


class SnapMeError(Exception):
    """Base exception for all photo claim errors."""

    pass


class ValidationError(SnapMeError):
    """Raised when input data fails validation (missing fields, bad files)."""

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        super().__init__(", ".join(errors))


class NotFoundError(SnapMeError):
    """Raised when a folder or photo does not exist."""

    pass


class InvalidTransitionError(SnapMeError):
    """Raised when a folder status change is not allowed."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change folder status from '{current}' to '{requested}'")


class BackendError(SnapMeError):
    """Exception raised for database or storage backend failures."""

    pass


class RateLimitError(BackendError):
    """Exception raised when the backend throttles requests."""

    pass


class ServerError(BackendError):
    """Exception raised for 5xx server errors and network failures."""

    pass
