# ABOUTME: Per-instance session token acquisition for Argo CD
# ABOUTME: Posts the fleet credentials to /api/v1/session and returns the token

"""Session manager: one token per instance per operation, never cached."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from argocd_fleet.utils.client import (
    ArgocdApplicationError,
    ArgocdAuthError,
    ArgocdTransportError,
    decode_body,
)

if TYPE_CHECKING:
    from argocd_fleet.config import ArgocdInstance
    from argocd_fleet.models import FleetContext

logger = structlog.get_logger(__name__)


async def get_token(ctx: FleetContext, instance: ArgocdInstance) -> str:
    """
    Acquire a session token for one instance.

    Instances configured with a static token return it without any request.
    Otherwise the credential pair is posted to {url}/api/v1/session. There is
    no retry here; callers decide whether to skip the instance or abort.

    Args:
        ctx: Fleet context holding the credentials and HTTP client
        instance: Target instance

    Returns:
        Bearer token for subsequent requests to this instance

    Raises:
        ArgocdAuthError: Credentials rejected (401) or no token in the reply
        ArgocdApplicationError: Any other non-2xx status
        ArgocdTransportError: Instance unreachable or reply unreadable
    """
    if instance.token is not None:
        return instance.token.get_secret_value()

    url = f"{instance.url}/api/v1/session"
    response = await ctx.http.request(
        "POST",
        url,
        json_data={
            "username": ctx.credentials.username,
            "password": ctx.credentials.password.get_secret_value(),
        },
    )

    if response.status_code == 401:
        logger.error("Argo CD rejected credentials", instance=instance.name, url=instance.url)
        raise ArgocdAuthError(instance.url)

    if not response.is_success:
        raise ArgocdApplicationError(
            f"Failed to create session on {instance.name}",
            code=response.status_code,
        )

    body = decode_body(response)
    if body is None:
        raise ArgocdTransportError(url, "session response is not a JSON object")

    token = body.get("token")
    if not token:
        raise ArgocdAuthError(instance.url, details="session response carried no token")

    logger.debug("Acquired Argo CD session token", instance=instance.name)
    return str(token)
