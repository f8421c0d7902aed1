# ABOUTME: HTTP boundary for talking to a fleet of Argo CD instances
# ABOUTME: Typed errors, response classification, retrying httpx wrapper, secret masking

"""
HTTP boundary shared by every Argo CD instance in the fleet.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Everything that touches the wire lives here:

1. ERRORS: The ArgocdError hierarchy used across the package
2. CLASSIFICATION: One function that turns an httpx.Response into a tagged
   result (Ok / SoftFailure / HardFailure)
3. TRANSPORT: ArgocdHttpClient, a thin async wrapper over httpx.AsyncClient
   with retry-on-timeout and bearer token handling
4. SECRET MASKING: Hiding tokens and passwords before bodies reach the logs

=============================================================================
ARGO CD ERROR SHAPES
=============================================================================

Argo CD reports failure in three different ways:

    HTTP status only                 500 with an empty body
    top-level error fields           {"error": "...", "message": "..."}
    nested response envelope         {"response": {"status": 403, "error": "...", "message": "..."}}

Callers should never inspect these shapes inline. classify_response() decides
once, at the boundary:

    2xx                                      -> Ok(body)
    non-2xx with an error/message pair       -> HardFailure(message)
    any other non-2xx                        -> SoftFailure(body)

=============================================================================
ONE CLIENT, MANY INSTANCES
=============================================================================

Unlike a single-server client there is no base_url here. Every request carries
its absolute URL and, except for session creation, the token of the instance
it targets. A single connection pool serves the whole fleet.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# SECRET MASKING PATTERNS
# =============================================================================

SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), r"\1***MASKED***"),
]

SENSITIVE_KEYS = frozenset(
    [
        "token",
        "password",
        "secret",
        "authorization",
        "credentials",
    ]
)


def mask_secrets(data: Any) -> Any:
    """
    Mask sensitive values in data destined for the logs.

    Walks dicts and lists recursively. Values under SENSITIVE_KEYS are
    replaced outright; strings are scrubbed with SECRET_PATTERNS.

    Args:
        data: Any decoded JSON value or raw string

    Returns:
        Same structure with sensitive values masked
    """
    if isinstance(data, str):
        masked = data
        for pattern, replacement in SECRET_PATTERNS:
            masked = pattern.sub(replacement, masked)
        return masked

    if isinstance(data, dict):
        return {
            k: "***MASKED***" if str(k).lower() in SENSITIVE_KEYS else mask_secrets(v)
            for k, v in data.items()
        }

    if isinstance(data, list):
        return [mask_secrets(item) for item in data]

    return data


# =============================================================================
# ERROR HIERARCHY
# =============================================================================


class ArgocdError(Exception):
    """
    Base class for every failure raised by the fleet client.

    Carries the HTTP status (when there is one), a primary message and
    optional details so callers can branch on type or status and still show
    something readable.

    USAGE:
    ------
    try:
        await delete_app(ctx, base_url=url, app_name="web", token=token)
    except ArgocdPermissionError as e:
        print(e.message)   # verbatim server message
    except ArgocdError as e:
        print(str(e))      # "ArgoCD API error (500): ..."
    """

    def __init__(self, message: str, code: int | None = None, details: str | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        base = self.message
        if self.code is not None:
            base = f"ArgoCD API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


class ArgocdConfigurationError(ArgocdError):
    """Invalid query or registry configuration. Raised before any I/O."""


class ArgocdInstanceNotFound(ArgocdConfigurationError):
    """Requested instance name is not in the registry."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f"Unable to find Argo instance named '{name}'. Available: {available}")


class ArgocdAuthError(ArgocdError):
    """An instance rejected the configured credentials."""

    def __init__(self, url: str, details: str | None = None) -> None:
        self.url = url
        super().__init__(f"Getting unauthorized for Argo CD instance {url}", 401, details)

    def __str__(self) -> str:
        return self.message


class ArgocdTransportError(ArgocdError):
    """The instance could not be reached or answered with an unreadable body."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        super().__init__(f"Request to {url} failed: {reason}")


class ArgocdApplicationError(ArgocdError):
    """Soft failure: non-2xx status without a permission payload."""


class ArgocdPermissionError(ArgocdError):
    """Hard failure: the body carried an error/message pair."""

    def __str__(self) -> str:
        return self.message


class ArgocdResourceCreationError(ArgocdError):
    """Project or application creation came back with an error field."""


# =============================================================================
# RESPONSE CLASSIFICATION
# =============================================================================


@dataclass(frozen=True)
class Ok:
    """2xx response with its decoded body ({} when empty)."""

    status: int
    body: dict[str, Any]


@dataclass(frozen=True)
class SoftFailure:
    """Non-2xx response without a permission payload. Recoverable by the caller."""

    status: int
    body: dict[str, Any]


@dataclass(frozen=True)
class HardFailure:
    """Non-2xx response carrying an error/message pair."""

    status: int
    message: str


ApiResult = Ok | SoftFailure | HardFailure


def decode_body(response: httpx.Response) -> dict[str, Any] | None:
    """
    Decode a JSON object body.

    Returns {} for an empty body and None when the body is not a JSON
    object, leaving the caller to decide whether that is fatal.
    """
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def error_payload(body: dict[str, Any]) -> tuple[str | None, str | None]:
    """
    Pull (error, message) out of either Argo CD error shape.

    Top-level fields win over the nested {"response": {...}} envelope.
    """
    error = body.get("error")
    message = body.get("message")
    nested = body.get("response")
    if isinstance(nested, dict):
        error = error or nested.get("error")
        message = message or nested.get("message")
    return error, message


def classify_response(response: httpx.Response) -> ApiResult:
    """
    Map an Argo CD response onto Ok / SoftFailure / HardFailure.

    This is the only place that interprets status codes together with
    error bodies. Operations then pick their own propagation policy:
    delete raises on HardFailure, sync folds both failures into a
    Failure status, and so on.

    Args:
        response: Raw httpx response

    Returns:
        The tagged result
    """
    body = decode_body(response) or {}

    if response.is_success:
        return Ok(status=response.status_code, body=body)

    error, message = error_payload(body)
    if error and message:
        return HardFailure(status=response.status_code, message=str(message))

    return SoftFailure(status=response.status_code, body=body)


# =============================================================================
# HTTP CLIENT
# =============================================================================


class ArgocdHttpClient:
    """
    Async HTTP client shared by every instance in the fleet.

    LIFECYCLE:
    ----------
        async with ArgocdHttpClient(timeout=30.0) as http:
            response = await http.request("GET", f"{url}/api/v1/applications", token=token)

    RETRY LOGIC:
    ------------
    Timeouts are retried with exponential backoff (3 attempts in total).
    Every other httpx failure, and a timeout on the last attempt, is raised
    as ArgocdTransportError. Status codes are never retried; classification
    is left to the caller.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        insecure: bool = False,
        mask_secrets: bool = True,
    ) -> None:
        """
        Initialize the client. The connection pool is opened in __aenter__.

        Args:
            timeout: Per-request timeout in seconds
            insecure: Skip TLS verification for every instance
            mask_secrets: Mask sensitive values in logged response bodies
        """
        self._timeout = timeout
        self._insecure = insecure
        self._mask_secrets = mask_secrets
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ArgocdHttpClient:
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
            verify=not self._insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def loggable(self, response: httpx.Response) -> Any:
        """Response body prepared for a log event (truncated, masked)."""
        body: Any = decode_body(response)
        if body is None:
            body = response.text[:200]
        return mask_secrets(body) if self._mask_secrets else body

    @retry(
        retry=retry_if_exception_type(httpx.TimeoutException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None,
        params: dict[str, Any] | None,
        json_data: dict[str, Any] | None,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return await self._client.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json_data,
        )

    async def request(
        self,
        method: str,
        url: str,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Send a request to one instance and return the raw response.

        Args:
            method: HTTP method
            url: Absolute URL including /api/v1/...
            token: Session token; sent as a bearer token when given
            params: Query parameters
            json_data: JSON request body

        Returns:
            The httpx response, whatever its status

        Raises:
            ArgocdTransportError: Network failure or timeout after retries
        """
        headers = {"Authorization": f"Bearer {token}"} if token else None
        log = logger.bind(method=method, url=url)
        log.debug("Making ArgoCD API request")

        try:
            response = await self._send(method, url, headers, params, json_data)
        except httpx.HTTPError as e:
            log.warning("ArgoCD request failed", error=str(e))
            raise ArgocdTransportError(url, str(e) or type(e).__name__) from e

        if not response.is_success:
            log.warning(
                "ArgoCD API error",
                status=response.status_code,
                body=self.loggable(response),
            )
        return response
