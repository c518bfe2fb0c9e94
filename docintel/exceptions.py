"""Exception hierarchy for the document intelligence pipeline."""


class DocIntelError(Exception):
    """Base class for all pipeline errors."""


class ServiceError(DocIntelError):
    """Raised when an external capability call fails."""


class TransientServiceError(ServiceError):
    """Raised for failures that are worth retrying."""


class ServiceTimeoutError(TransientServiceError):
    """Raised when an external call exceeds its time budget."""


class ServiceUnavailableError(TransientServiceError):
    """Raised on connection errors and 5xx responses."""


class ModelWarmingUpError(TransientServiceError):
    """Raised when a hosted model reports that it is still loading."""

    def __init__(self, message: str, estimated_time: float | None = None) -> None:
        super().__init__(message)
        self.estimated_time = estimated_time


class MalformedResponseError(ServiceError):
    """Raised when a service answers with something we cannot parse."""


class CapabilityNotConfiguredError(ServiceError):
    """Raised when a client is used without credentials or an endpoint."""


class NoUsableTextError(DocIntelError):
    """Raised when no recognition engine produced usable text."""
