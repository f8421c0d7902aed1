# ABOUTME: Configuration management for the Argo CD fleet client
# ABOUTME: Handles environment variables, fleet credentials, instances, and security modes

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module resolves everything the fleet client needs before it talks to a
single Argo CD server:

1. READS environment variables (ARGOCD_USERNAME, ARGOCD_FLEET_INSTANCES, ...)
2. VALIDATES them (URLs normalised, log level known, timeout positive)
3. PROVIDES typed access to settings for the server and the orchestration core

The orchestration modules never read the environment themselves. They get a
FleetContext built once from these settings.

=============================================================================
ARCHITECTURE: FOUR CONFIGURATION CLASSES
=============================================================================

1. ArgocdInstance: One Argo CD server (name, URL, optional static token)
2. ArgocdCredentials: The username/password pair used for session creation
3. SecuritySettings: MCP_* guards (read-only, destructive ops, audit log)
4. ServerSettings: Top-level container tying the above together

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

Fleet:
    ARGOCD_USERNAME                  -> Session username
    ARGOCD_PASSWORD                  -> Session password
    ARGOCD_INSECURE                  -> Skip TLS verification for every instance
    ARGOCD_FLEET_INSTANCES           -> JSON array of {"name", "url", "token"?}
    ARGOCD_FLEET_APP_NAME_SUFFIXES   -> JSON array of name suffixes to try
    ARGOCD_FLEET_APP_LABEL_KEY       -> Label key written on created applications
    ARGOCD_FLEET_REQUEST_TIMEOUT     -> HTTP timeout in seconds
    ARGOCD_FLEET_LOG_LEVEL           -> DEBUG, INFO, WARNING, ERROR, CRITICAL

Security settings (MCP_ prefix):
    MCP_READ_ONLY           -> Block all write operations (default: true)
    MCP_DISABLE_DESTRUCTIVE -> Block delete operations (default: true)
    MCP_AUDIT_LOG           -> Path to audit log file
    MCP_MASK_SECRETS        -> Mask sensitive data in logs (default: true)
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# ARGOCD INSTANCE CONFIGURATION
# =============================================================================


class ArgocdInstance(BaseModel):
    """
    Configuration for a single Argo CD instance in the fleet.

    Each instance is authoritative for its own applications. The fleet
    client never assumes two instances share state.

    USAGE EXAMPLE:
    --------------
        instance = ArgocdInstance(name="nonprod", url="https://argocd.nonprod.example.com")

    A static token is optional. When present the session endpoint is skipped
    for this instance and the token is used as-is.
    """

    model_config = {"extra": "ignore", "frozen": True}

    name: str = Field(description="Instance identifier")
    url: str = Field(description="Argo CD server URL")
    token: SecretStr | None = Field(default=None, description="Static API token (optional)")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """
        Ensure URL has a scheme and no trailing slash.

        "argocd.example.com/" becomes "https://argocd.example.com" so that
        appending "/api/v1/..." never yields a double slash.
        """
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")


class ArgocdCredentials(BaseModel):
    """Username/password pair posted to every instance's session endpoint."""

    model_config = {"frozen": True}

    username: str = Field(default="", description="Argo CD username")
    password: SecretStr = Field(default=SecretStr(""), description="Argo CD password")


# =============================================================================
# SECURITY SETTINGS
# =============================================================================


class SecuritySettings(BaseSettings):
    """
    Security-related configuration for the MCP surface.

    Layer 1: MCP_READ_ONLY=true (default)
        - Blocks resync and create operations

    Layer 2: MCP_DISABLE_DESTRUCTIVE=true (default)
        - Even if writes are enabled, blocks deletes

    Layer 3: Confirmation (in SafetyGuard)
        - Deletes require confirm=true AND confirm_name matching the target
    """

    model_config = SettingsConfigDict(env_prefix="MCP_")

    read_only: bool = Field(
        default=True,
        description="Block all write operations when true",
    )

    disable_destructive: bool = Field(
        default=True,
        description="Block delete operations when true",
    )

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # One JSON object per line: timestamp, correlation_id, action, target, result, details.
    # When None, audit entries go to stdout through structlog.

    mask_secrets: bool = Field(
        default=True,
        description="Mask sensitive values in logged response bodies",
    )


# =============================================================================
# MAIN SERVER SETTINGS
# =============================================================================


class ServerSettings(BaseSettings):
    """
    Main configuration.

    USAGE:
    ------
        settings = load_settings()
        for instance in settings.instances:
            print(instance.name, instance.url)
        print(settings.security.read_only)
    """

    model_config = SettingsConfigDict(
        env_prefix="ARGOCD_FLEET_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # CREDENTIALS (process-wide, memory only)
    # -------------------------------------------------------------------------

    argocd_username: str = Field(
        default="",
        validation_alias="ARGOCD_USERNAME",
        description="Username for Argo CD session creation",
    )

    argocd_password: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ARGOCD_PASSWORD",
        description="Password for Argo CD session creation",
    )

    argocd_insecure: bool = Field(
        default=False,
        validation_alias="ARGOCD_INSECURE",
        description="Skip TLS verification for all instances",
    )

    # -------------------------------------------------------------------------
    # FLEET
    # -------------------------------------------------------------------------

    instances: list[ArgocdInstance] = Field(
        default_factory=list,
        description="Argo CD instances in registry order",
    )
    # ARGOCD_FLEET_INSTANCES='[{"name": "nonprod", "url": "https://argocd.nonprod"}]'

    app_name_suffixes: list[str] = Field(
        default_factory=lambda: ["", "-nonprod", "-prod"],
        description="Suffixes probed in order when locating an application by name",
    )

    app_label_key: str = Field(
        default="argocd-fleet/app",
        description="Label key written on applications created by the fleet client",
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds",
    )

    # -------------------------------------------------------------------------
    # LOGGING
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    security: SecuritySettings = Field(default_factory=SecuritySettings)

    @property
    def credentials(self) -> ArgocdCredentials:
        """Credential pair assembled from ARGOCD_USERNAME / ARGOCD_PASSWORD."""
        return ArgocdCredentials(username=self.argocd_username, password=self.argocd_password)


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> ServerSettings:
    """
    Load settings from environment with validation.

    If ARGOCD_FLEET_ENV_FILE is set, variables are also read from that file.

    Example .env file:
        ARGOCD_USERNAME=backstage
        ARGOCD_PASSWORD=changeme
        ARGOCD_FLEET_INSTANCES=[{"name": "nonprod", "url": "https://argocd.nonprod.example.com"}]
        MCP_READ_ONLY=false

    Returns:
        Fully validated ServerSettings instance.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ServerSettings(
        _env_file=os.environ.get("ARGOCD_FLEET_ENV_FILE"),
    )
