"""Exceptions raised by the Tokko origin client."""


class TokkoError(Exception):
    """Base class for origin client failures."""


class TokkoConfigError(TokkoError):
    """The client was configured with a missing or malformed API key."""


class ReadOnlyViolationError(TokkoError):
    """A request would have written to the origin or left the endpoint whitelist."""


class TokkoAPIError(TokkoError):
    """The origin answered with an error status or could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TokkoNotFoundError(TokkoAPIError):
    """The requested resource does not exist at the origin (HTTP 404)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)
