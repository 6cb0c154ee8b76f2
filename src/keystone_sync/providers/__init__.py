"""Resource providers, one class per kind."""

from __future__ import annotations

from typing import TYPE_CHECKING

from keystone_sync.models import DesiredResource
from keystone_sync.providers.base import Option, Provider, ProviderState
from keystone_sync.providers.domain import DomainProvider
from keystone_sync.providers.endpoint import EndpointProvider
from keystone_sync.providers.project import ProjectProvider
from keystone_sync.providers.role import RoleProvider
from keystone_sync.providers.service import ServiceProvider
from keystone_sync.providers.user import UserProvider
from keystone_sync.providers.user_role import UserRoleProvider

if TYPE_CHECKING:
    from keystone_sync.cache import InstanceCache
    from keystone_sync.credentials import Credentials
    from keystone_sync.executor import CommandExecutor

PROVIDERS: dict[str, type[Provider]] = {
    cls.kind: cls
    for cls in (
        DomainProvider,
        ProjectProvider,
        RoleProvider,
        UserProvider,
        ServiceProvider,
        EndpointProvider,
        UserRoleProvider,
    )
}


def provider_for(
    resource: DesiredResource,
    executor: "CommandExecutor",
    cache: "InstanceCache",
    credentials: "Credentials | None" = None,
) -> Provider:
    """Bind a declared resource to the provider for its kind."""
    return PROVIDERS[resource.kind](resource, executor, cache, credentials)


__all__ = [
    "PROVIDERS",
    "DomainProvider",
    "EndpointProvider",
    "Option",
    "ProjectProvider",
    "Provider",
    "ProviderState",
    "RoleProvider",
    "ServiceProvider",
    "UserProvider",
    "UserRoleProvider",
    "provider_for",
]
