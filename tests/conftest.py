# ABOUTME: Pytest fixtures and configuration for the Argo CD fleet client tests
# ABOUTME: Provides instances, credentials, an open fleet context, and safety guards

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from argocd_fleet.config import ArgocdCredentials, ArgocdInstance, SecuritySettings
from argocd_fleet.models import FleetContext
from argocd_fleet.registry import InstanceRegistry
from argocd_fleet.utils.client import ArgocdHttpClient
from argocd_fleet.utils.safety import SafetyGuard


@pytest.fixture
def instances() -> list[ArgocdInstance]:
    """Two session-authenticated instances in registry order."""
    return [
        ArgocdInstance(name="argoInstance1", url="https://argo-instance-1.example.com"),
        ArgocdInstance(name="argoInstance2", url="https://argo-instance-2.example.com"),
    ]


@pytest.fixture
def credentials() -> ArgocdCredentials:
    """Fleet credential pair."""
    return ArgocdCredentials(username="testusername", password=SecretStr("testpassword"))


@pytest.fixture
async def http() -> AsyncIterator[ArgocdHttpClient]:
    """Open HTTP client; routes are mocked per test with respx."""
    async with ArgocdHttpClient(timeout=5.0) as client:
        yield client


@pytest.fixture
def fleet(
    instances: list[ArgocdInstance],
    credentials: ArgocdCredentials,
    http: ArgocdHttpClient,
) -> FleetContext:
    """Fleet context over both instances."""
    return FleetContext(
        credentials=credentials,
        registry=InstanceRegistry(instances),
        http=http,
    )


@pytest.fixture
def single_fleet(
    instances: list[ArgocdInstance],
    credentials: ArgocdCredentials,
    http: ArgocdHttpClient,
) -> FleetContext:
    """Fleet context over argoInstance1 only."""
    return FleetContext(
        credentials=credentials,
        registry=InstanceRegistry(instances[:1]),
        http=http,
    )


@pytest.fixture
def mock_security_settings() -> SecuritySettings:
    """Security settings with every write enabled."""
    return SecuritySettings(
        read_only=False,
        disable_destructive=False,
        audit_log=None,
        mask_secrets=True,
    )


@pytest.fixture
def read_only_security_settings() -> SecuritySettings:
    """Default, locked-down security settings."""
    return SecuritySettings(
        read_only=True,
        disable_destructive=True,
        audit_log=None,
        mask_secrets=True,
    )


@pytest.fixture
def safety_guard(mock_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a safety guard for testing."""
    return SafetyGuard(mock_security_settings)


@pytest.fixture
def read_only_safety_guard(read_only_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a read-only safety guard for testing."""
    return SafetyGuard(read_only_security_settings)


@pytest.fixture
def mock_context() -> MagicMock:
    """Create a mock MCP context."""
    ctx = MagicMock()
    ctx.request_id = "test-request-123"
    ctx.report_progress = AsyncMock()
    return ctx
