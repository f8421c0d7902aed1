# ABOUTME: Create, delete, and sync operations scoped to one Argo CD instance
# ABOUTME: Each operation keeps its own success / soft-failure / hard-failure contract

"""
Resource mutator.

Every operation here targets exactly one instance. They differ on purpose in
how failures reach the caller:

    operation                  2xx       soft failure      hard failure (error+message)
    ------------------------   -------   ---------------   ----------------------------
    create_argo_project        body      body              body
    create_argo_application    body      body              body
    delete_project/delete_app  True      False             raises ArgocdPermissionError
    sync_argo_app              Success   Failure           Failure

Transport failures raise everywhere except sync_argo_app, which never raises.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import structlog

from argocd_fleet.models import MutationRequest, SyncResult, TeardownResult
from argocd_fleet.session import get_token
from argocd_fleet.utils.client import (
    ArgocdError,
    ArgocdPermissionError,
    ArgocdResourceCreationError,
    ArgocdTransportError,
    HardFailure,
    Ok,
    classify_response,
    decode_body,
    error_payload,
)

if TYPE_CHECKING:
    from argocd_fleet.models import FleetContext, LocatedInstance

logger = structlog.get_logger(__name__)


# =============================================================================
# MANIFESTS
# =============================================================================


def project_manifest(req: MutationRequest) -> dict[str, Any]:
    """AppProject allowing the request's repo to deploy into its namespace."""
    return {
        "project": {
            "metadata": {"name": req.project_name},
            "spec": {
                "destinations": [
                    {"namespace": req.namespace, "server": req.destination_server},
                ],
                "sourceRepos": [req.source_repo],
            },
        },
    }


def application_manifest(req: MutationRequest) -> dict[str, Any]:
    """Application bound to req.project_name with automated sync."""
    metadata: dict[str, Any] = {
        "name": req.app_name,
        "finalizers": ["resources-finalizer.argocd.argoproj.io"],
    }
    if req.label_value:
        metadata["labels"] = {req.label_key: req.label_value}

    source: dict[str, Any] = {"repoURL": req.source_repo}
    if req.source_path:
        source["path"] = req.source_path

    return {
        "metadata": metadata,
        "spec": {
            "destination": {"namespace": req.namespace, "server": req.destination_server},
            "project": req.project_name,
            "revisionHistoryLimit": 10,
            "source": source,
            "syncPolicy": {
                "automated": {"allowEmpty": True, "prune": True, "selfHeal": True},
                "retry": {
                    "backoff": {"duration": "5s", "factor": 2, "maxDuration": "5m"},
                    "limit": 10,
                },
                "syncOptions": ["CreateNamespace=false"],
            },
        },
    }


# =============================================================================
# CREATE
# =============================================================================


async def _post_manifest(
    ctx: FleetContext,
    url: str,
    token: str,
    manifest: dict[str, Any],
) -> dict[str, Any]:
    response = await ctx.http.request("POST", url, token=token, json_data=manifest)
    body = decode_body(response)
    if body is None:
        raise ArgocdTransportError(
            url, f"unexpected non-JSON response ({response.status_code})"
        )
    return body


async def create_argo_project(ctx: FleetContext, req: MutationRequest) -> dict[str, Any]:
    """
    Create an Argo CD project.

    Application-level failures come back as data: the decoded body is
    returned whether it is the created project, {"error": ...} or
    {"response": {"status", "error", "message"}}.

    Raises:
        ArgocdTransportError: Network failure or unreadable body
    """
    return await _post_manifest(
        ctx, f"{req.base_url}/api/v1/projects", req.argo_token, project_manifest(req)
    )


async def create_argo_application(ctx: FleetContext, req: MutationRequest) -> dict[str, Any]:
    """
    Create an Argo CD application referencing req.project_name.

    Same contract as create_argo_project.
    """
    return await _post_manifest(
        ctx, f"{req.base_url}/api/v1/applications", req.argo_token, application_manifest(req)
    )


async def create_argo_resources(
    ctx: FleetContext,
    *,
    argo_instance: str,
    app_name: str,
    project_name: str,
    namespace: str,
    source_repo: str,
    source_path: str | None = None,
    label_value: str | None = None,
) -> bool:
    """
    Create a project and then an application on one instance.

    There is no rollback. If the project is created and the application is
    not, the project stays behind.

    Args:
        ctx: Fleet context
        argo_instance: Registry name of the target instance
        app_name: Application name
        project_name: Project name (also referenced by the application)
        namespace: Destination namespace
        source_repo: Git repository URL
        source_path: Path inside the repository
        label_value: Value of the ctx.app_label_key label on the application

    Returns:
        True once both resources are created

    Raises:
        ArgocdInstanceNotFound: Unknown instance name
        ArgocdResourceCreationError: Either response carried an error field
        ArgocdAuthError, ArgocdTransportError: Session or network failure
    """
    log = logger.bind(instance=argo_instance, app=app_name, project=project_name)
    log.info("Creating Argo CD project and application")

    instance = ctx.registry.find_instance(argo_instance)
    token = await get_token(ctx, instance)

    req = MutationRequest(
        base_url=instance.url,
        argo_token=token,
        project_name=project_name,
        namespace=namespace,
        source_repo=source_repo,
        source_path=source_path,
        label_value=label_value,
        app_name=app_name,
        label_key=ctx.app_label_key,
    )

    project = await create_argo_project(ctx, req)
    error, _ = error_payload(project)
    if error:
        log.error("Argo CD project creation failed", error=error)
        raise ArgocdResourceCreationError(f"Error creating argo project: {error}")

    application = await create_argo_application(ctx, req)
    error, _ = error_payload(application)
    if error:
        log.error("Argo CD application creation failed, project left in place", error=error)
        raise ArgocdResourceCreationError(f"Error creating argo app: {error}")

    log.info("Created Argo CD project and application")
    return True


# =============================================================================
# DELETE
# =============================================================================


async def _delete(ctx: FleetContext, url: str, token: str) -> bool:
    result = classify_response(await ctx.http.request("DELETE", url, token=token))

    if isinstance(result, Ok):
        return True
    if isinstance(result, HardFailure):
        raise ArgocdPermissionError(result.message, code=result.status)
    return False


async def delete_project(ctx: FleetContext, *, base_url: str, project_name: str, token: str) -> bool:
    """
    Delete a project.

    Returns:
        True on 2xx, False on any other status without an error body

    Raises:
        ArgocdPermissionError: Body carried error/message; message is verbatim
        ArgocdTransportError: Network failure
    """
    url = f"{base_url}/api/v1/projects/{quote(project_name, safe='')}"
    return await _delete(ctx, url, token)


async def delete_app(ctx: FleetContext, *, base_url: str, app_name: str, token: str) -> bool:
    """Delete an application. Same three-way contract as delete_project."""
    url = f"{base_url}/api/v1/applications/{quote(app_name, safe='')}"
    return await _delete(ctx, url, token)


async def delete_app_and_project(
    ctx: FleetContext,
    *,
    argo_instance: str,
    app_name: str,
    project_name: str,
) -> TeardownResult:
    """
    Delete an application, then its project, on one instance.

    The project delete is attempted even if the application delete was a
    soft failure; Argo CD refuses to delete a project still in use.

    Raises:
        ArgocdInstanceNotFound: Unknown instance name
        ArgocdPermissionError: Either delete was denied
    """
    instance = ctx.registry.find_instance(argo_instance)
    token = await get_token(ctx, instance)

    app_deleted = await delete_app(ctx, base_url=instance.url, app_name=app_name, token=token)
    project_deleted = await delete_project(
        ctx, base_url=instance.url, project_name=project_name, token=token
    )

    logger.info(
        "Deleted Argo CD application and project",
        instance=argo_instance,
        app=app_name,
        app_deleted=app_deleted,
        project=project_name,
        project_deleted=project_deleted,
    )
    return TeardownResult(app_deleted=app_deleted, project_deleted=project_deleted)


# =============================================================================
# SYNC
# =============================================================================


async def sync_argo_app(
    ctx: FleetContext,
    *,
    instance: LocatedInstance,
    token: str,
    app_name: str,
) -> SyncResult:
    """
    Trigger a sync of one application. Never raises.

    Permission denials (403) are reported as a Failure result, unlike
    delete_app / delete_project which raise on them.
    """
    url = f"{instance.url}/api/v1/applications/{quote(app_name, safe='')}/sync"
    try:
        result = classify_response(await ctx.http.request("POST", url, token=token))
    except ArgocdError as e:
        logger.warning("Sync request failed", instance=instance.name, app=app_name, error=str(e))
        return SyncResult.failure(app_name, instance.name)

    if isinstance(result, Ok):
        return SyncResult.success(app_name, instance.name)
    return SyncResult.failure(app_name, instance.name)
