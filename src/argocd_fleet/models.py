# ABOUTME: Value types and the explicit fleet context for orchestration calls
# ABOUTME: AppQuery, LocatedInstance, SyncResult, MutationRequest, FleetContext

"""
Request-scoped value types and the fleet context.

Nothing here holds state across calls except FleetContext, which is built
once at startup and only read afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from argocd_fleet.registry import InstanceRegistry
from argocd_fleet.utils.client import ArgocdConfigurationError

if TYPE_CHECKING:
    from argocd_fleet.config import ArgocdCredentials, ServerSettings
    from argocd_fleet.utils.client import ArgocdHttpClient

DEFAULT_DESTINATION_SERVER = "https://kubernetes.default.svc"

SyncStatus = Literal["Success", "Failure"]


@dataclass(frozen=True)
class AppQuery:
    """
    Application lookup: exactly one of name (exact match) or selector
    (label selector).

    Empty strings count as missing. An invalid query raises on construction,
    so no request is ever sent for it.

        AppQuery(name="web-nonprod")
        AppQuery(selector="team=payments")
    """

    name: str | None = None
    selector: str | None = None

    def __post_init__(self) -> None:
        if bool(self.name) == bool(self.selector):
            raise ArgocdConfigurationError(
                "Exactly one of an application name or selector is required"
            )

    @property
    def params(self) -> dict[str, str]:
        """Query parameters for the application list endpoint."""
        if self.name:
            return {"name": self.name}
        return {"selector": self.selector or ""}


@dataclass
class LocatedInstance:
    """An instance hosting one or more applications matched by a query."""

    name: str
    url: str
    app_names: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of one (instance, application) sync.

    instance and app_name identify the pair for audit records; equality
    only looks at message and status.
    """

    message: str
    status: SyncStatus
    instance: str = field(default="", compare=False)
    app_name: str = field(default="", compare=False)

    @classmethod
    def success(cls, app_name: str, instance_name: str) -> SyncResult:
        return cls(
            message=f"Re-synced {app_name} on {instance_name}",
            status="Success",
            instance=instance_name,
            app_name=app_name,
        )

    @classmethod
    def failure(cls, app_name: str, instance_name: str) -> SyncResult:
        return cls(
            message=f"Failed to resync {app_name} on {instance_name}",
            status="Failure",
            instance=instance_name,
            app_name=app_name,
        )


@dataclass(frozen=True)
class MutationRequest:
    """
    One instance-scoped create request.

    Describes both the project and the application that references it;
    create_argo_project only reads the project fields.
    """

    base_url: str
    argo_token: str
    project_name: str
    namespace: str
    source_repo: str
    source_path: str | None = None
    label_value: str | None = None
    app_name: str | None = None
    destination_server: str = DEFAULT_DESTINATION_SERVER
    label_key: str = "argocd-fleet/app"


@dataclass(frozen=True)
class TeardownResult:
    """Outcome of deleting an application and then its project."""

    app_deleted: bool
    project_deleted: bool


@dataclass(frozen=True)
class FleetContext:
    """
    Everything an orchestration call needs, passed explicitly.

    Attributes:
        credentials: Username/password for session creation
        registry: Configured instances in order
        http: Open HTTP client shared across instances
        app_name_suffixes: Suffixes probed, in order, for name lookups
        app_label_key: Label key written on created applications
    """

    credentials: ArgocdCredentials
    registry: InstanceRegistry
    http: ArgocdHttpClient
    app_name_suffixes: tuple[str, ...] = ("", "-nonprod", "-prod")
    app_label_key: str = "argocd-fleet/app"

    @classmethod
    def from_settings(cls, settings: ServerSettings, http: ArgocdHttpClient) -> FleetContext:
        """Build the context from validated settings and an entered HTTP client."""
        return cls(
            credentials=settings.credentials,
            registry=InstanceRegistry(settings.instances),
            http=http,
            app_name_suffixes=tuple(settings.app_name_suffixes) or ("",),
            app_label_key=settings.app_label_key,
        )
