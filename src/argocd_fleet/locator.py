# ABOUTME: Locates which Argo CD instances host an application
# ABOUTME: Concurrent per-instance queries by exact name or label selector

"""
App locator.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

find_argo_app() answers "where does this application live?" for the whole
fleet. Every registered instance is queried concurrently:

    instance A ──> token ──> GET /api/v1/applications?selector=...  ──> [web-prod]
    instance B ──> token ──> GET /api/v1/applications?selector=...  ──> []
    instance C ──> token ──> connection refused                     ──> (failed)

    result: [LocatedInstance(A, [web-prod])]

=============================================================================
FAILURE POLICY
=============================================================================

- A transport error or non-2xx status means "not on this instance".
- If EVERY instance fails, the lookup itself fails (ArgocdTransportError).
- An authentication failure on ANY instance aborts the lookup. Skipping it
  silently would report an application as absent when we simply could not
  look.

=============================================================================
NAME PROBING
=============================================================================

A name query tries the bare name and then each configured suffix, in order:

    "web" -> "web", "web-nonprod", "web-prod"

The first candidate that answers without error and with a match wins. Only
an item carrying metadata.name is a match; Argo CD answers an unknown name
with a null items list.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from argocd_fleet.models import AppQuery, LocatedInstance
from argocd_fleet.session import get_token
from argocd_fleet.utils.client import (
    ArgocdApplicationError,
    ArgocdAuthError,
    ArgocdError,
    ArgocdTransportError,
    decode_body,
)
from argocd_fleet.utils.logging import set_fleet_instance

if TYPE_CHECKING:
    from argocd_fleet.config import ArgocdInstance
    from argocd_fleet.models import FleetContext

logger = structlog.get_logger(__name__)


async def get_argo_app_data(
    ctx: FleetContext,
    base_url: str,
    instance_name: str,
    query: AppQuery,
    token: str,
) -> dict[str, Any]:
    """
    Query one instance's application list endpoint.

    The decoded body is decorated with its originating instance:
    - name queries get a top-level "instance" key
    - selector queries get metadata.instance = {"name": ...} on every item

    Args:
        ctx: Fleet context
        base_url: Instance URL
        instance_name: Instance name used for decoration
        query: Name or selector query
        token: Session token for this instance

    Returns:
        Decorated response body

    Raises:
        ArgocdApplicationError: Non-2xx status
        ArgocdTransportError: Network failure or unreadable body
    """
    url = f"{base_url}/api/v1/applications"
    response = await ctx.http.request("GET", url, token=token, params=query.params)

    if not response.is_success:
        raise ArgocdApplicationError(
            f"Request failed with {response.status_code} Error",
            code=response.status_code,
        )

    data = decode_body(response)
    if data is None:
        raise ArgocdTransportError(url, "application response is not a JSON object")

    items = data.get("items")
    if isinstance(items, list):
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("metadata", {}), dict):
                item.setdefault("metadata", {})["instance"] = {"name": instance_name}
    if query.name:
        data["instance"] = instance_name

    return data


def _matched_names(data: dict[str, Any]) -> list[str]:
    """
    Application names present in a decorated response.

    A list reply contributes every item that has a metadata.name; a null or
    empty items list is no match. A single-application reply matches only
    when it carries its own metadata.name.
    """
    items = data.get("items")
    if isinstance(items, list):
        return [name for item in items if (name := _item_name(item))]
    if "items" in data:
        return []
    name = _item_name(data)
    return [name] if name else []


def _item_name(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    metadata = item.get("metadata")
    if not isinstance(metadata, dict):
        return None
    name = metadata.get("name")
    return name if isinstance(name, str) and name else None


async def _names_by_selector(
    ctx: FleetContext,
    instance: ArgocdInstance,
    query: AppQuery,
    token: str,
) -> list[str]:
    data = await get_argo_app_data(ctx, instance.url, instance.name, query, token)
    return _matched_names(data)


async def _names_by_probing(
    ctx: FleetContext,
    instance: ArgocdInstance,
    query: AppQuery,
    token: str,
) -> list[str]:
    """
    Try name + suffix for each configured suffix.

    Error responses move on to the next candidate. If every candidate
    errored, the last error is raised so the instance counts as failed.
    """
    last_error: ArgocdApplicationError | None = None
    answered = False

    for suffix in ctx.app_name_suffixes:
        candidate = AppQuery(name=f"{query.name}{suffix}")
        try:
            data = await get_argo_app_data(ctx, instance.url, instance.name, candidate, token)
        except ArgocdApplicationError as e:
            last_error = e
            continue

        answered = True
        names = _matched_names(data)
        if names:
            return names

    if not answered and last_error is not None:
        raise last_error
    return []


async def _locate_on_instance(
    ctx: FleetContext,
    instance: ArgocdInstance,
    query: AppQuery,
) -> LocatedInstance | None:
    set_fleet_instance(instance.name)
    token = await get_token(ctx, instance)

    if query.selector:
        names = await _names_by_selector(ctx, instance, query, token)
    else:
        names = await _names_by_probing(ctx, instance, query, token)

    if not names:
        return None
    return LocatedInstance(name=instance.name, url=instance.url, app_names=names)


async def find_argo_app(ctx: FleetContext, query: AppQuery) -> list[LocatedInstance]:
    """
    Find every instance hosting applications that match the query.

    Args:
        ctx: Fleet context
        query: Validated name or selector query

    Returns:
        Matching instances in registry order, each with a non-empty
        app_names list. Instances without a match are left out.

    Raises:
        ArgocdAuthError: An instance rejected the credentials (first in
            registry order)
        ArgocdTransportError: Every registered instance failed
    """
    instances = ctx.registry.list_instances()
    log = logger.bind(query=query.params)

    outcomes = await asyncio.gather(
        *(_locate_on_instance(ctx, instance, query) for instance in instances),
        return_exceptions=True,
    )

    located: list[LocatedInstance] = []
    failures = 0

    for instance, outcome in zip(instances, outcomes, strict=True):
        if isinstance(outcome, ArgocdAuthError):
            raise outcome
        if isinstance(outcome, ArgocdError):
            failures += 1
            log.warning(
                "Error getting Argo app data from instance",
                instance=instance.name,
                error=str(outcome),
            )
            continue
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is not None:
            located.append(outcome)

    if instances and failures == len(instances):
        raise ArgocdTransportError(
            ", ".join(instance.url for instance in instances),
            "no Argo CD instance could be queried",
        )

    log.info("Located Argo CD application", instances=[i.name for i in located])
    return located
