"""Exception types for description resolution."""
from typing import List, Optional


class DescriptionServiceError(Exception):
    """Base class for all description service errors."""


class UnknownCountryError(DescriptionServiceError):
    """Country identifier could not be mapped to an ISO2 code."""

    def __init__(self, identifier: str):
        super().__init__(f"Unknown country identifier: {identifier!r}")
        self.identifier = identifier


class RemoteUnavailableError(DescriptionServiceError):
    """The authoritative remote store could not be reached or failed."""


class SnapshotLoadError(DescriptionServiceError):
    """The local snapshot file is missing or unreadable."""


class CalendarUnavailableError(DescriptionServiceError):
    """Holiday calendar data could not be loaded or fetched."""


class ValidationError(DescriptionServiceError):
    """A write was rejected because its fields are invalid."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []
