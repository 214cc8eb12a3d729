"""Workspace token resolution.

Turns the configured workspace token (a numeric ObjectID or a name) into a
workspace reference such as ``/workspace/12345``. Strategies are tried in order
and the first success wins:

1. exact lookup by ObjectID (numeric token) or by Name (anything else)
2. case-insensitive substring match of the token against all accessible
   workspace names (name tokens only)
3. the first accessible workspace, in the order the API lists them

Strategies 2 and 3 succeed with an advisory message. They are skipped when
fallback is disabled. Failures are returned as a ResolutionError on the
result, never raised, so callers decide how to treat them.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import (
    BackendError,
    ResolutionError,
    ResolutionFailure,
    TransportError,
    UnauthorizedError,
)

logger = logging.getLogger("rally-core.workspaces")

_WORKSPACE_REF_PATTERN = re.compile(r"/workspace/(\d+)")


class WorkspaceDirectory(Protocol):
    """Anything that can list workspaces (RallyClient, or a test double)."""

    async def query_workspaces(self, query: Optional[str] = None, timeout: Optional[float] = None) -> list[dict]:
        ...


@dataclass(frozen=True)
class WorkspaceResolution:
    """Outcome of resolving a workspace token."""

    reference: Optional[str] = None
    workspace_name: Optional[str] = None
    advisory: Optional[str] = None
    error: Optional[ResolutionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.reference is not None

    @property
    def substituted(self) -> bool:
        """True when a different workspace than requested was selected."""
        return self.ok and self.advisory is not None


def is_numeric_token(token: str) -> bool:
    """Tokens made only of digits are ObjectIDs; everything else is a name."""
    return token.isdigit()


def workspace_object_id(entry: dict) -> Optional[str]:
    """ObjectID of a workspace entry, falling back to the digits in its _ref."""
    object_id = entry.get("ObjectID")
    if object_id is not None and str(object_id).strip():
        return str(object_id)

    match = _WORKSPACE_REF_PATTERN.search(entry.get("_ref") or "")
    if match:
        return match.group(1)
    return None


def workspace_reference(entry: dict) -> Optional[str]:
    object_id = workspace_object_id(entry)
    return f"/workspace/{object_id}" if object_id else None


def build_exact_query(token: str) -> str:
    """Rally query expression matching the token exactly."""
    if is_numeric_token(token):
        return f"(ObjectID = {token})"
    escaped = token.replace('"', '\\"')
    return f'(Name = "{escaped}")'


def _failure(message: str, reason: ResolutionFailure) -> WorkspaceResolution:
    logger.error(f"Workspace resolution failed ({reason.value}): {message}")
    return WorkspaceResolution(error=ResolutionError(message, reason))


def _substitute(entry: dict, advisory: str) -> WorkspaceResolution:
    logger.warning(advisory)
    return WorkspaceResolution(
        reference=workspace_reference(entry),
        workspace_name=entry.get("Name"),
        advisory=advisory,
    )


async def resolve_workspace(
    directory: WorkspaceDirectory,
    token: str,
    allow_fallback: bool = True,
    timeout: Optional[float] = None,
) -> WorkspaceResolution:
    """Resolve a workspace token to a workspace reference.

    Args:
        directory: Source of workspace listings
        token: Workspace ObjectID (all digits) or name
        allow_fallback: Permit substring / first-available substitution
        timeout: Per-call timeout override (seconds)

    Returns:
        WorkspaceResolution with either a reference (and maybe an advisory) or an error
    """
    numeric = is_numeric_token(token)

    try:
        matches = await directory.query_workspaces(build_exact_query(token), timeout=timeout)
        if len(matches) == 1:
            reference = workspace_reference(matches[0])
            if reference is not None:
                logger.info(f"Workspace access confirmed: {matches[0].get('Name')} ({reference})")
                return WorkspaceResolution(reference=reference, workspace_name=matches[0].get("Name"))

        logger.info(f"Workspace {token!r} not found by exact {'ObjectID' if numeric else 'name'}, listing accessible workspaces")
        candidates = await directory.query_workspaces(timeout=timeout)
    except UnauthorizedError:
        return _failure("Authentication failed - invalid API key", ResolutionFailure.AUTH)
    except TransportError as e:
        if e.is_network_error:
            return _failure(
                f"No response from Rally API server - network issue or service unavailable ({e})",
                ResolutionFailure.NETWORK,
            )
        return _failure(f"Error checking workspace: {e}", ResolutionFailure.BACKEND)
    except BackendError as e:
        return _failure(f"Workspace listing failed: {'; '.join(e.errors)}", ResolutionFailure.BACKEND)

    if not candidates:
        return _failure("No accessible workspaces found with this API key", ResolutionFailure.NO_WORKSPACES)

    logger.info(f"Found {len(candidates)} accessible workspaces")
    for index, ws in enumerate(candidates):
        logger.debug(f"  [{index}] ID: {ws.get('ObjectID')}, Name: {ws.get('Name')}, Ref: {ws.get('_ref')}")

    if not allow_fallback:
        return _failure(
            f'Workspace "{token}" not found and workspace fallback is disabled',
            ResolutionFailure.NOT_FOUND,
        )

    if not numeric:
        needle = token.lower()
        matched = next(
            (ws for ws in candidates if ws.get("Name") and needle in ws["Name"].lower()),
            None,
        )
        if matched is not None and workspace_reference(matched) is not None:
            return _substitute(
                matched,
                f'Workspace "{token}" not found by exact name; substituting matched workspace '
                f'"{matched.get("Name")}" ({workspace_object_id(matched)})',
            )

    first = candidates[0]
    if workspace_reference(first) is None:
        return _failure(
            f'Workspace "{token}" not found and the first available workspace '
            f'"{first.get("Name")}" has no usable ObjectID',
            ResolutionFailure.UNRESOLVABLE,
        )

    return _substitute(
        first,
        f'Workspace "{token}" not found; using first available workspace '
        f'"{first.get("Name")}" ({workspace_object_id(first)}) instead',
    )
