"""Rally API client.

Wraps a persistent httpx.AsyncClient with:
- ZSESSIONID credential header and a per-call timeout ceiling
- classification of failures into TransportError / UnauthorizedError / BackendError,
  each carrying the operation that failed
- a lazily resolved, per-instance workspace reference (never a module global)

The client makes at most one attempt per call; retries are not performed.
"""
import logging
from typing import Any, Optional

import httpx

from .config import Settings
from .errors import BackendError, TransportError, UnauthorizedError
from .workspaces import WorkspaceResolution, resolve_workspace

logger = logging.getLogger("rally-core.client")

ARTIFACT_TYPE = "HierarchicalRequirement"

# Envelopes Rally wraps results in; each may carry an Errors list
RESULT_ENVELOPES = ("QueryResult", "OperationResult", "CreateResult")


def _backend_errors(payload: Any) -> list[str]:
    """Collect Errors reported inside a Rally result envelope."""
    if not isinstance(payload, dict):
        return []
    errors: list[str] = []
    for envelope in RESULT_ENVELOPES:
        body = payload.get(envelope)
        if isinstance(body, dict) and body.get("Errors"):
            errors.extend(str(err) for err in body["Errors"])
    return errors


class RallyClient:
    """Async client for the Rally Web Services API."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.workspace_token = settings.rally_workspace
        self.project_ref = settings.project_ref
        self._http = httpx.AsyncClient(
            base_url=settings.rally_base_url,
            headers={"ZSESSIONID": settings.rally_api_key},
            timeout=settings.request_timeout,
            transport=transport,
        )
        self._workspace_ref: Optional[str] = None
        self.workspace_advisory: Optional[str] = None

    async def __aenter__(self) -> "RallyClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Workspace reference cache
    # ------------------------------------------------------------------

    @property
    def workspace_ref(self) -> Optional[str]:
        """Cached workspace reference, or None until resolved."""
        return self._workspace_ref

    async def resolve(self, timeout: Optional[float] = None) -> WorkspaceResolution:
        """Resolve the configured workspace token, caching the reference on success.

        Never raises for resolution failures; inspect ``resolution.error``.
        """
        resolution = await resolve_workspace(
            self,
            self.workspace_token,
            allow_fallback=self.settings.workspace_fallback,
            timeout=timeout,
        )
        if resolution.ok:
            # Concurrent first resolves converge on the same reference
            self._workspace_ref = resolution.reference
            self.workspace_advisory = resolution.advisory
        return resolution

    async def ensure_workspace(self) -> str:
        """Return the workspace reference, resolving it on first use.

        Raises:
            ResolutionError: if no workspace can be resolved
        """
        if self._workspace_ref is not None:
            return self._workspace_ref

        resolution = await self.resolve()
        if resolution.error is not None:
            raise resolution.error
        return resolution.reference

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        operation: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """Issue one request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the configured base URL
            operation: Failure message prefix, e.g. "Failed to update story 123"
            params: Query parameters (None values are dropped)
            json: JSON request body
            timeout: Override of the per-call timeout (seconds)

        Raises:
            UnauthorizedError: on HTTP 401
            TransportError: on network failure, timeout, or other non-2xx status
            BackendError: when the response envelope reports Errors
        """
        kwargs: dict[str, Any] = {}
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v is not None}
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"{operation}: HTTP {status} from {method} {e.request.url}")
            if status == 401:
                raise UnauthorizedError(
                    f"{operation}: authentication failed (HTTP 401)",
                    operation=operation,
                    status_code=status,
                ) from e
            raise TransportError(
                f"{operation}: request failed with status {status}",
                operation=operation,
                status_code=status,
            ) from e
        except httpx.TimeoutException as e:
            logger.error(f"{operation}: {method} {path} timed out")
            raise TransportError(
                f"{operation}: request timed out",
                operation=operation,
                timed_out=True,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"{operation}: {type(e).__name__} during {method} {path}: {e}")
            raise TransportError(
                f"{operation}: {type(e).__name__}: {e}",
                operation=operation,
            ) from e

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(
                f"{operation}: response was not valid JSON",
                operation=operation,
                status_code=response.status_code,
            ) from e

        errors = _backend_errors(payload)
        if errors:
            logger.error(f"{operation}: Rally reported errors: {errors}")
            raise BackendError(f"{operation}: {'; '.join(errors)}", operation=operation, errors=errors)
        return payload

    async def get(self, path: str, operation: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> dict:
        return await self.request("GET", path, operation, params=params, timeout=timeout)

    async def post(self, path: str, operation: str, json: dict) -> dict:
        return await self.request("POST", path, operation, json=json)

    async def delete(self, path: str, operation: str) -> dict:
        return await self.request("DELETE", path, operation)

    # ------------------------------------------------------------------
    # Endpoints used by resolution and validation
    # ------------------------------------------------------------------

    async def ping(self, timeout: Optional[float] = None) -> dict:
        """Fetch subscription info; the cheapest authenticated call."""
        return await self.get("/subscription", "Failed to reach Rally API", timeout=timeout)

    async def query_workspaces(self, query: Optional[str] = None, timeout: Optional[float] = None) -> list[dict]:
        """List accessible workspaces, optionally filtered by a Rally query expression."""
        operation = "Failed to query workspaces" if query else "Failed to list workspaces"
        payload = await self.get(
            "/workspace",
            operation,
            params={"query": query, "fetch": "ObjectID,Name"},
            timeout=timeout,
        )
        return payload.get("QueryResult", {}).get("Results", [])
