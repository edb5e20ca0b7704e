"""
Exception types raised inside adapters and validation.

Adapters raise these; the resilient call executor converts them into failed
SourceResults so nothing escapes past the orchestrator.
"""

from agripipe.models import ErrorKind


class QueryValidationError(ValueError):
    """The inbound query cannot be collected for (no usable location)."""


class LocationNotFoundError(ValueError):
    """Free-text location could not be resolved to coordinates."""


class SourceError(Exception):
    """An upstream provider failed in a way we already classified."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind


class MissingCredentialsError(SourceError):
    """Provider needs an API key or account that is not configured."""

    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.AUTH_ERROR)
