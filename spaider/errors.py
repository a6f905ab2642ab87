"""Exception types raised by the pipeline stages."""


class SpaiderError(Exception):
    """Base class for all pipeline errors."""


class SchemaValidationError(SpaiderError):
    """Raised when a structured response is not valid JSON or fails its schema.

    ``raw`` holds the cleaned response text so the caller can report the
    offending content.
    """

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


class UnsupportedOperationError(SpaiderError):
    """Raised when a deletion is routed through the modification path."""


class TransportError(SpaiderError):
    """Raised when the backend could not be reached after transport retries."""
