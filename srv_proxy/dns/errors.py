class ResolutionError(Exception):
    """Base class for everything that keeps an SRV target from being resolved."""


class TransportError(ResolutionError):
    """The DoH call could not be completed (timeout, refused connection, bad status)."""


class ValidationError(ResolutionError):
    """A DoH body or an SRV answer did not have the expected shape."""


class RecordNotFoundError(ResolutionError):
    """The resolver answered, but without any record for the query."""

    def __init__(self, message: str = "Record not found"):
        super().__init__(message)
