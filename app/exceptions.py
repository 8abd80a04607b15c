"""
Error taxonomy for insight storage and the HTTP layer.

Each error carries the HTTP status the API layer answers with.
"""

from typing import Optional


class InsightsError(Exception):
    """Base class for all insight errors"""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(InsightsError):
    """A required field is missing or a value is not allowed"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(InsightsError):
    """Index out of range or unknown slug"""

    status_code = 404


class ConflictError(InsightsError):
    """The stored document changed since its version token was read"""

    status_code = 409


class UpstreamUnavailableError(InsightsError):
    """The remote file store is unreachable or answered unexpectedly"""

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status
