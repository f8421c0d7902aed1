# ABOUTME: Safety guards for fleet-wide Argo CD operations
# ABOUTME: Read-only mode, destructive-operation switch, and name confirmation

"""Safety checks run before any tool touches the fleet."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from argocd_fleet.config import SecuritySettings

logger = structlog.get_logger(__name__)


@dataclass
class ConfirmationRequired:
    """Response asking the caller to confirm a destructive operation."""

    operation: str
    target: str
    impact: str
    confirmation_instructions: str
    details: dict[str, Any] = field(default_factory=dict)

    def format_message(self) -> str:
        """Render the request as plain text for the agent."""
        lines = [
            f"CONFIRMATION REQUIRED: {self.operation}",
            "",
            f"Target: {self.target}",
            f"Impact: {self.impact}",
        ]

        if self.details:
            lines.append("")
            lines.append("Details:")
            lines.extend(f"  {key}: {value}" for key, value in self.details.items())

        lines.extend(["", self.confirmation_instructions])
        return "\n".join(lines)


@dataclass
class OperationBlocked:
    """Response for an operation disabled by configuration."""

    operation: str
    reason: str
    setting: str

    def format_message(self) -> str:
        """Render the refusal as plain text for the agent."""
        return (
            f"OPERATION BLOCKED: {self.operation}\n"
            f"Reason: {self.reason}\n"
            f"Setting: {self.setting}\n"
            f"To enable: Set {self.setting}=false in server configuration"
        )


class SafetyGuard:
    """
    Gatekeeper for fleet operations.

    Lookups always pass. Resync and create need MCP_READ_ONLY=false.
    Deletes additionally need MCP_DISABLE_DESTRUCTIVE=false and an explicit
    confirmation naming the target.
    """

    IMPACTS = {
        "delete_app_and_project": (
            "Application, its managed resources and its project will be PERMANENTLY DELETED"
        ),
    }

    def __init__(self, settings: SecuritySettings) -> None:
        self._settings = settings

    def check_write_operation(self, operation: str) -> OperationBlocked | None:
        """
        Check whether a mutating operation may run.

        Args:
            operation: Tool name

        Returns:
            OperationBlocked if blocked, None if allowed
        """
        if self._settings.read_only:
            logger.info("Write operation blocked", operation=operation)
            return OperationBlocked(
                operation=operation,
                reason="Server is running in read-only mode",
                setting="MCP_READ_ONLY",
            )
        return None

    def check_destructive_operation(
        self,
        operation: str,
        target: str,
        confirmed: bool = False,
        confirm_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> OperationBlocked | ConfirmationRequired | None:
        """
        Check whether a delete may run.

        Args:
            operation: Tool name
            target: Name the caller must echo back in confirm_name
            confirmed: Caller set confirm=true
            confirm_name: Caller's confirmation of the target name
            details: Extra lines shown in the confirmation request

        Returns:
            OperationBlocked if disabled, ConfirmationRequired if not yet
            confirmed, None if allowed
        """
        write_check = self.check_write_operation(operation)
        if write_check:
            return write_check

        if self._settings.disable_destructive:
            logger.info("Destructive operation blocked", operation=operation, target=target)
            return OperationBlocked(
                operation=operation,
                reason="Destructive operations are disabled",
                setting="MCP_DISABLE_DESTRUCTIVE",
            )

        if not confirmed or confirm_name != target:
            return ConfirmationRequired(
                operation=operation,
                target=target,
                impact=self.IMPACTS.get(operation, "This operation may have significant impact"),
                confirmation_instructions=(
                    f"To proceed, set confirm=true AND confirm_name='{target}'"
                ),
                details=details or {},
            )

        return None
