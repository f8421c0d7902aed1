# ABOUTME: Read-only registry of configured Argo CD instances
# ABOUTME: Lists instances in configuration order and resolves them by name

"""Instance registry: read-only view over the configured fleet."""

from __future__ import annotations

from typing import TYPE_CHECKING

from argocd_fleet.utils.client import ArgocdConfigurationError, ArgocdInstanceNotFound

if TYPE_CHECKING:
    from collections.abc import Iterable

    from argocd_fleet.config import ArgocdInstance


class InstanceRegistry:
    """Argo CD instances in configuration order, addressable by name."""

    def __init__(self, instances: Iterable[ArgocdInstance]) -> None:
        """
        Initialize registry.

        Args:
            instances: Resolved instances; order is preserved in every
                aggregate result built from this registry

        Raises:
            ArgocdConfigurationError: Two instances share a name
        """
        self._instances = tuple(instances)
        self._by_name: dict[str, ArgocdInstance] = {}
        for instance in self._instances:
            if instance.name in self._by_name:
                raise ArgocdConfigurationError(
                    f"Duplicate Argo CD instance name '{instance.name}'"
                )
            self._by_name[instance.name] = instance

    def __len__(self) -> int:
        return len(self._instances)

    def list_instances(self) -> list[ArgocdInstance]:
        """All instances in registry order."""
        return list(self._instances)

    def find_instance(self, name: str) -> ArgocdInstance:
        """
        Resolve an instance by name.

        Raises:
            ArgocdInstanceNotFound: No instance with that name is configured
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise ArgocdInstanceNotFound(name, list(self._by_name)) from None
