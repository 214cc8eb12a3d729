"""Exception taxonomy for Rally operations.

Error messages carry the operation name and identifiers (story ID,
relationship kind) but never the API key.
"""
import enum
from typing import Optional


class RallyError(Exception):
    """Base class for all Rally errors."""


class ConfigurationError(RallyError):
    """Raised when required settings are missing or invalid."""


class ValidationError(RallyError):
    """Raised when a caller violates an operation contract.

    Examples: unknown relationship kind, self-relationship, update with no fields.
    Never retried; surfaced verbatim to the tool caller.
    """


class ResolutionFailure(str, enum.Enum):
    """Why workspace resolution failed."""

    AUTH = "auth"
    NETWORK = "network"
    NO_WORKSPACES = "no_workspaces"
    NOT_FOUND = "not_found"          # Fallback disabled and no exact match
    UNRESOLVABLE = "unresolvable"    # Selected entry has no usable ObjectID
    BACKEND = "backend"              # Other HTTP status or QueryResult errors


class ResolutionError(RallyError):
    """Raised (or returned) when no workspace reference can be produced."""

    def __init__(self, message: str, reason: ResolutionFailure):
        super().__init__(message)
        self.reason = reason


class TransportError(RallyError):
    """Network failure, timeout, or non-2xx response from the Rally API."""

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.timed_out = timed_out

    @property
    def is_network_error(self) -> bool:
        """True when no HTTP response was received at all."""
        return self.status_code is None


class UnauthorizedError(TransportError):
    """The Rally API rejected the API key (HTTP 401)."""


class BackendError(RallyError):
    """A 2xx response whose result envelope reports errors."""

    def __init__(self, message: str, operation: str, errors: list[str]):
        super().__init__(message)
        self.operation = operation
        self.errors = errors
