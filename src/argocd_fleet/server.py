# ABOUTME: FastMCP server initialization and main entry point
# ABOUTME: Exposes fleet lookup, resync, create, and teardown as MCP tools

"""Argo CD fleet MCP server."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from argocd_fleet import aggregator, locator, mutator
from argocd_fleet.config import ServerSettings, load_settings
from argocd_fleet.models import AppQuery, FleetContext
from argocd_fleet.utils.client import ArgocdError, ArgocdHttpClient
from argocd_fleet.utils.logging import AuditLogger, configure_logging, set_correlation_id
from argocd_fleet.utils.safety import ConfirmationRequired, SafetyGuard

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger(__name__)

# Global state (initialized in lifespan)
_settings: ServerSettings | None = None
_fleet: FleetContext | None = None
_safety_guard: SafetyGuard | None = None
_audit_logger: AuditLogger | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Load config, open the shared HTTP client, build the fleet context."""
    global _settings, _fleet, _safety_guard, _audit_logger

    logger.info("Starting Argo CD fleet server")

    _settings = load_settings()
    configure_logging(level=_settings.log_level)
    _safety_guard = SafetyGuard(_settings.security)
    _audit_logger = AuditLogger(_settings.security.audit_log)

    if not _settings.instances:
        logger.warning("No Argo CD instances configured", variable="ARGOCD_FLEET_INSTANCES")
    if not _settings.argocd_username and any(i.token is None for i in _settings.instances):
        logger.warning("ARGOCD_USERNAME is not set; session creation will fail")

    async with ArgocdHttpClient(
        timeout=_settings.request_timeout,
        insecure=_settings.argocd_insecure,
        mask_secrets=_settings.security.mask_secrets,
    ) as http:
        _fleet = FleetContext.from_settings(_settings, http)
        for instance in _fleet.registry.list_instances():
            logger.info("Registered Argo CD instance", instance=instance.name, url=instance.url)

        yield {"settings": _settings, "fleet": _fleet}

    _fleet = None
    logger.info("Argo CD fleet server stopped")


mcp = FastMCP("argocd-fleet", lifespan=lifespan)


def get_settings() -> ServerSettings:
    """Get server settings."""
    if not _settings:
        raise RuntimeError("Server not initialized")
    return _settings


def get_fleet() -> FleetContext:
    """Get the fleet context shared by every tool."""
    if not _fleet:
        raise RuntimeError("Server not initialized")
    return _fleet


def get_safety_guard() -> SafetyGuard:
    """Get safety guard for permission checking."""
    if not _safety_guard:
        raise RuntimeError("Server not initialized")
    return _safety_guard


def get_audit_logger() -> AuditLogger:
    """Get audit logger for recording operations."""
    if not _audit_logger:
        raise RuntimeError("Server not initialized")
    return _audit_logger


def _describe(name: str | None, selector: str | None) -> str:
    return f"name={name}" if name else f"selector={selector}"


# =============================================================================
# LOOKUP (Always Available)
# =============================================================================


class AppQueryParams(BaseModel):
    """Application lookup by exact name or label selector (exactly one)."""

    name: str | None = Field(
        default=None,
        description="Application name; suffixes such as -nonprod and -prod are probed too",
    )
    selector: str | None = Field(
        default=None, description="Label selector, e.g. 'team=payments'"
    )


@mcp.tool()
async def find_argo_app(params: AppQueryParams, ctx: Context) -> str:
    """
    Find which Argo CD instances host an application.

    Queries every configured instance concurrently and lists the matching
    application names per instance.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")
    target = _describe(params.name, params.selector)

    try:
        query = AppQuery(name=params.name, selector=params.selector)
        located = await locator.find_argo_app(get_fleet(), query)

        get_audit_logger().log_lookup(target, located)

        if not located:
            return f"No application matching {target} found on any Argo CD instance."

        lines = [f"Found {target} on {len(located)} instance(s):", ""]
        for inst in located:
            lines.append(f"- {inst.name} ({inst.url}): {', '.join(inst.app_names)}")
        return "\n".join(lines)

    except ArgocdError as e:
        get_audit_logger().log_error("find_argo_app", target, str(e))
        return str(e)


# =============================================================================
# WRITE OPERATIONS (Require MCP_READ_ONLY=false)
# =============================================================================


@mcp.tool()
async def resync_app(params: AppQueryParams, ctx: Context) -> str:
    """
    Trigger a sync of an application on every instance that hosts it.

    Reports one line per (instance, application) pair. A failure on one
    instance does not stop the others.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")
    target = _describe(params.name, params.selector)

    blocked = get_safety_guard().check_write_operation("resync_app")
    if blocked:
        get_audit_logger().log_blocked("resync_app", target, blocked.reason)
        return blocked.format_message()

    try:
        query = AppQuery(name=params.name, selector=params.selector)

        await ctx.report_progress(0, 1, f"Resyncing {target} across the fleet")
        results = await aggregator.resync_app_on_all_argos(get_fleet(), query)
        await ctx.report_progress(1, 1, "Complete")

        get_audit_logger().log_resync(target, results)

        flat = [r for per_instance in results for r in per_instance]
        if not flat:
            return f"No application matching {target} found on any Argo CD instance."

        lines = [f"Resync of {target}:", ""]
        for r in flat:
            marker = "[OK]" if r.status == "Success" else "[!]"
            lines.append(f"- {r.message} {marker}")
        return "\n".join(lines)

    except ArgocdError as e:
        get_audit_logger().log_error("resync_app", target, str(e))
        return str(e)


class CreateArgoResourcesParams(BaseModel):
    """Parameters for create_argo_resources tool."""

    argo_instance: str = Field(description="Name of the target Argo CD instance")
    app_name: str = Field(description="Application name")
    project_name: str = Field(description="Project name, created first")
    namespace: str = Field(description="Destination namespace")
    source_repo: str = Field(description="Git repository URL")
    source_path: str | None = Field(default=None, description="Path inside the repository")
    label_value: str | None = Field(
        default=None, description="Value for the application's fleet label"
    )


@mcp.tool()
async def create_argo_resources(params: CreateArgoResourcesParams, ctx: Context) -> str:
    """
    Create an Argo CD project and an application on one instance.

    The project is created first. If the application then fails, the
    project is left in place.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")
    target = f"{params.argo_instance}/{params.app_name}"

    blocked = get_safety_guard().check_write_operation("create_argo_resources")
    if blocked:
        get_audit_logger().log_blocked("create_argo_resources", target, blocked.reason)
        return blocked.format_message()

    try:
        await mutator.create_argo_resources(
            get_fleet(),
            argo_instance=params.argo_instance,
            app_name=params.app_name,
            project_name=params.project_name,
            namespace=params.namespace,
            source_repo=params.source_repo,
            source_path=params.source_path,
            label_value=params.label_value,
        )

        get_audit_logger().log_created(params.argo_instance, params.app_name, params.project_name)
        return (
            f"Created project '{params.project_name}' and application '{params.app_name}' "
            f"on {params.argo_instance}."
        )

    except ArgocdError as e:
        get_audit_logger().log_error("create_argo_resources", target, str(e))
        return str(e)


# =============================================================================
# DESTRUCTIVE OPERATIONS (Require confirmation)
# =============================================================================


class DeleteAppAndProjectParams(BaseModel):
    """Parameters for delete_app_and_project tool."""

    argo_instance: str = Field(description="Name of the target Argo CD instance")
    app_name: str = Field(description="Application to delete")
    project_name: str = Field(description="Project to delete after the application")
    confirm: bool = Field(default=False, description="Must be true to proceed")
    confirm_name: str | None = Field(
        default=None, description="Must match app_name to confirm deletion"
    )


@mcp.tool()
async def delete_app_and_project(params: DeleteAppAndProjectParams, ctx: Context) -> str:
    """
    Delete an application and then its project on one instance (DESTRUCTIVE).

    Requires explicit confirmation. Set confirm=true AND confirm_name
    matching the application name to proceed.
    """
    set_correlation_id(ctx.request_id if hasattr(ctx, "request_id") else "")
    target = f"{params.argo_instance}/{params.app_name}"

    blocked = get_safety_guard().check_destructive_operation(
        "delete_app_and_project",
        params.app_name,
        confirmed=params.confirm,
        confirm_name=params.confirm_name,
        details={"instance": params.argo_instance, "project": params.project_name},
    )
    if blocked:
        reason = (
            "confirmation required" if isinstance(blocked, ConfirmationRequired) else blocked.reason
        )
        get_audit_logger().log_blocked("delete_app_and_project", target, reason)
        return blocked.format_message()

    try:
        result = await mutator.delete_app_and_project(
            get_fleet(),
            argo_instance=params.argo_instance,
            app_name=params.app_name,
            project_name=params.project_name,
        )

        get_audit_logger().log_teardown(
            params.argo_instance, params.app_name, params.project_name, result
        )
        return (
            f"Application '{params.app_name}': {'deleted' if result.app_deleted else 'NOT deleted'}\n"
            f"Project '{params.project_name}': "
            f"{'deleted' if result.project_deleted else 'NOT deleted'}"
        )

    except ArgocdError as e:
        get_audit_logger().log_error("delete_app_and_project", target, str(e))
        return str(e)


# =============================================================================
# MCP RESOURCES
# =============================================================================


@mcp.resource("argocd://instances")
async def get_instances_resource() -> str:
    """List the configured Argo CD instances in registry order."""
    instances = get_fleet().registry.list_instances()

    if not instances:
        return "No Argo CD instances configured"

    lines = ["Configured Argo CD Instances:", ""]
    for inst in instances:
        auth = "static token" if inst.token is not None else "session"
        lines.append(f"- {inst.name}: {inst.url} ({auth})")

    return "\n".join(lines)


@mcp.resource("argocd://security")
async def get_security_resource() -> str:
    """Get current security settings."""
    sec = get_settings().security

    return (
        "Security Settings:\n"
        f"  Read-only mode: {sec.read_only}\n"
        f"  Destructive operations disabled: {sec.disable_destructive}\n"
        f"  Secret masking: {sec.mask_secrets}\n"
        f"  Audit log: {sec.audit_log or 'stdout'}"
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the Argo CD fleet MCP server."""
    configure_logging(level="INFO")
    logger.info("Argo CD fleet server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
