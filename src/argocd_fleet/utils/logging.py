# ABOUTME: Structured logging with correlation IDs for the Argo CD fleet client
# ABOUTME: structlog configuration, per-instance tagging, and the fleet audit trail

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: structlog events with key/value fields, rendered as
   coloured console lines or JSON.

2. FLEET CONTEXT: One correlation ID per tool call, plus the name of the
   instance a fan-out branch is working on, attached to every event.

3. AUDIT LOGGING: One record per fleet operation, carrying what happened on
   each instance, to a JSON-lines file or to the normal log stream.

=============================================================================
CORRELATION ACROSS A FAN-OUT
=============================================================================

A single resync touches every instance concurrently:

    {"correlation_id": "a1b2c3d4", "instance": "nonprod", "event": "Making ArgoCD API request"}
    {"correlation_id": "a1b2c3d4", "instance": "prod", "event": "ArgoCD API error", "status": 403}
    {"correlation_id": "a1b2c3d4", "event": "Resynced application across fleet", "failures": 1}

Both values live in ContextVars. asyncio copies the current context into
each task created by gather(), so:

- the correlation ID must exist BEFORE the fan-out starts, otherwise each
  branch would generate its own (set_correlation_id always leaves one set)
- the instance name set inside a branch stays in that branch
"""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path

    from argocd_fleet.models import LocatedInstance, SyncResult, TeardownResult


# =============================================================================
# REQUEST CONTEXT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
fleet_instance: ContextVar[str] = ContextVar("fleet_instance", default="")


def _new_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(cid: str = "") -> str:
    """
    Start a request: set its correlation ID before any fan-out.

    Args:
        cid: Request ID from the MCP context; a fresh ID is generated when
             empty

    Returns:
        The ID now in effect
    """
    cid = cid or _new_correlation_id()
    correlation_id.set(cid)
    fleet_instance.set("")
    return cid


def get_correlation_id() -> str:
    """Current correlation ID, generated on first use outside a request."""
    cid = correlation_id.get()
    if not cid:
        cid = _new_correlation_id()
        correlation_id.set(cid)
    return cid


def set_fleet_instance(name: str) -> None:
    """Tag events from the current fan-out branch with an instance name."""
    fleet_instance.set(name)


def add_fleet_context(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """
    structlog processor adding the correlation ID, and the branch instance
    when inside a fan-out. An explicit instance= on the event wins.
    """
    event_dict["correlation_id"] = get_correlation_id()
    instance = fleet_instance.get()
    if instance:
        event_dict.setdefault("instance", instance)
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog once at startup.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: Render JSON lines instead of console output
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_fleet_context,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit trail for fleet operations.

    Every record carries timestamp, correlation_id, action, target and
    result. Fleet-wide actions add what happened per instance:

    {"timestamp": "2024-01-15T10:30:05+00:00", "correlation_id": "def45678",
     "action": "resync_app", "target": "selector=team=payments",
     "result": "partial",
     "details": {"instances": {"nonprod": {"synced": ["web"], "failed": []},
                               "prod": {"synced": [], "failed": ["web"]}}}}
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Args:
            log_path: JSON-lines file to append to, or None to emit records
                      through structlog
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write one record. Empty details are left out."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info("audit", **{k: v for k, v in entry.items() if k != "timestamp"})

    def log_lookup(self, target: str, located: list[LocatedInstance]) -> None:
        """Record which instances host the queried application."""
        self.log(
            "find_argo_app",
            target,
            "found" if located else "not_found",
            {"instances": {inst.name: list(inst.app_names) for inst in located}},
        )

    def log_resync(self, target: str, results: list[list[SyncResult]]) -> None:
        """
        Record a fleet resync with synced and failed apps per instance.

        Result is "success", "partial" or "failed"; "not_found" when no
        instance hosted the application.
        """
        per_instance: dict[str, dict[str, list[str]]] = defaultdict(
            lambda: {"synced": [], "failed": []}
        )
        for r in (r for instance_results in results for r in instance_results):
            per_instance[r.instance]["synced" if r.status == "Success" else "failed"].append(
                r.app_name
            )

        failed = sum(len(outcome["failed"]) for outcome in per_instance.values())
        synced = sum(len(outcome["synced"]) for outcome in per_instance.values())
        if not failed and not synced:
            result = "not_found"
        elif not failed:
            result = "success"
        elif not synced:
            result = "failed"
        else:
            result = "partial"

        self.log("resync_app", target, result, {"instances": dict(per_instance)})

    def log_created(self, instance: str, app_name: str, project_name: str) -> None:
        """Record a project and application created on one instance."""
        self.log(
            "create_argo_resources",
            f"{instance}/{app_name}",
            "created",
            {"instance": instance, "project": project_name},
        )

    def log_teardown(
        self,
        instance: str,
        app_name: str,
        project_name: str,
        outcome: TeardownResult,
    ) -> None:
        """Record an application and project teardown on one instance."""
        if outcome.app_deleted and outcome.project_deleted:
            result = "deleted"
        elif outcome.app_deleted or outcome.project_deleted:
            result = "partial"
        else:
            result = "not_deleted"

        self.log(
            "delete_app_and_project",
            f"{instance}/{app_name}",
            result,
            {
                "instance": instance,
                "app_deleted": outcome.app_deleted,
                "project": project_name,
                "project_deleted": outcome.project_deleted,
            },
        )

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        """Record an operation stopped by a safety check."""
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        """Record an operation that failed with an error."""
        self.log(action, target, "error", {"error": error})
