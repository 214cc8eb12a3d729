"""Staged credential and connectivity validation.

    ping API ──network failure──> INVALID(network)
             ──HTTP 401─────────> INVALID(auth)
             ──other failure────> INVALID(backend)
             ──ok──> resolve workspace ──fatal────> INVALID(resolution)
                                       ──advisory─> VALID_WITH_WARNING
                                       ──exact────> VALID

validate_connection() never raises. A successful check leaves the resolved
workspace reference cached on the client.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .client import RallyClient
from .errors import RallyError, ResolutionFailure, TransportError, UnauthorizedError

logger = logging.getLogger("rally-core.connection")


class ConnectionStatus(str, enum.Enum):
    VALID = "valid"
    VALID_WITH_WARNING = "valid_with_warning"
    INVALID = "invalid"


class InvalidReason(str, enum.Enum):
    NETWORK = "network"
    AUTH = "auth"
    BACKEND = "backend"
    RESOLUTION = "resolution"


@dataclass(frozen=True)
class ConnectionCheck:
    """Outcome of validate_connection()."""

    status: ConnectionStatus
    reason: Optional[InvalidReason] = None
    message: Optional[str] = None
    workspace_ref: Optional[str] = None
    resolution_failure: Optional[ResolutionFailure] = None

    @property
    def valid(self) -> bool:
        return self.status is not ConnectionStatus.INVALID

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "valid": self.valid,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "workspace_ref": self.workspace_ref,
        }


def _invalid(reason: InvalidReason, message: str, failure: Optional[ResolutionFailure] = None) -> ConnectionCheck:
    logger.error(f"Rally connection invalid ({reason.value}): {message}")
    return ConnectionCheck(
        status=ConnectionStatus.INVALID,
        reason=reason,
        message=message,
        resolution_failure=failure,
    )


async def validate_connection(client: RallyClient, timeout: Optional[float] = None) -> ConnectionCheck:
    """Check API reachability, then workspace access and resolution.

    Args:
        client: Client to validate (its workspace cache is filled on success)
        timeout: Per-call ceiling; defaults to the configured validation timeout
    """
    if timeout is None:
        timeout = client.settings.validation_timeout

    try:
        logger.info("Validating Rally API credentials...")
        await client.ping(timeout=timeout)
    except UnauthorizedError:
        return _invalid(InvalidReason.AUTH, "Authentication failed - invalid API key")
    except TransportError as e:
        if e.is_network_error:
            detail = "request timed out" if e.timed_out else str(e)
            return _invalid(
                InvalidReason.NETWORK,
                f"No response from Rally API server - network issue or service unavailable ({detail})",
            )
        return _invalid(InvalidReason.BACKEND, f"Request failed with status {e.status_code}")
    except RallyError as e:
        return _invalid(InvalidReason.BACKEND, f"Unexpected response from Rally API: {e}")
    except Exception as e:
        logger.exception("Unexpected error while validating Rally API credentials")
        return _invalid(InvalidReason.BACKEND, f"Failed to validate credentials: {type(e).__name__}: {e}")

    logger.info("Rally API key is valid, checking workspace access...")
    try:
        resolution = await client.resolve(timeout=timeout)
    except Exception as e:
        logger.exception("Unexpected error while resolving workspace")
        return _invalid(InvalidReason.RESOLUTION, f"Error checking workspace: {type(e).__name__}: {e}")

    if resolution.error is not None:
        return _invalid(InvalidReason.RESOLUTION, str(resolution.error), resolution.error.reason)

    if resolution.advisory:
        return ConnectionCheck(
            status=ConnectionStatus.VALID_WITH_WARNING,
            message=resolution.advisory,
            workspace_ref=resolution.reference,
        )
    return ConnectionCheck(status=ConnectionStatus.VALID, workspace_ref=resolution.reference)
