# ABOUTME: Fleet-wide resync of an application across every Argo CD instance
# ABOUTME: Locates, syncs concurrently, and returns results in registry order

"""Result aggregator: fan out syncs across the fleet and join them in order."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from argocd_fleet.locator import find_argo_app
from argocd_fleet.models import SyncResult
from argocd_fleet.mutator import sync_argo_app
from argocd_fleet.session import get_token
from argocd_fleet.utils.client import ArgocdError
from argocd_fleet.utils.logging import set_fleet_instance

if TYPE_CHECKING:
    from argocd_fleet.models import AppQuery, FleetContext, LocatedInstance

logger = structlog.get_logger(__name__)


async def _resync_instance(ctx: FleetContext, located: LocatedInstance) -> list[SyncResult]:
    set_fleet_instance(located.name)
    try:
        token = await get_token(ctx, ctx.registry.find_instance(located.name))
    except ArgocdError as e:
        logger.warning("Could not get a sync token", instance=located.name, error=str(e))
        return [SyncResult.failure(app_name, located.name) for app_name in located.app_names]

    return list(
        await asyncio.gather(
            *(
                sync_argo_app(ctx, instance=located, token=token, app_name=app_name)
                for app_name in located.app_names
            )
        )
    )


async def resync_app_on_all_argos(ctx: FleetContext, query: AppQuery) -> list[list[SyncResult]]:
    """
    Resync every application matching the query on every instance hosting it.

    Lookup failures propagate: an invalid query never gets this far, an
    authentication failure or a fleet-wide outage during lookup raises.
    Everything after lookup is reported as data, including a token failure
    on one instance, which yields a Failure result for each of its apps.

    Args:
        ctx: Fleet context
        query: Name or selector query

    Returns:
        One list per located instance (registry order), each holding one
        SyncResult per application (locator order)

    Raises:
        ArgocdAuthError: Lookup could not authenticate against an instance
        ArgocdTransportError: No instance could be queried
    """
    located = await find_argo_app(ctx, query)

    results = list(await asyncio.gather(*(_resync_instance(ctx, inst) for inst in located)))

    failed = sum(1 for per_instance in results for r in per_instance if r.status == "Failure")
    logger.info(
        "Resynced application across fleet",
        query=query.params,
        instances=len(results),
        failures=failed,
    )
    return results
