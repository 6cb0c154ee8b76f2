"""Service identity: one declaration for everything an OpenStack service needs.

A ``ServiceIdentity`` expands, in this order, into:

1. the user's domain (when one is named),
2. the granted roles,
3. the service user,
4. the catalog service,
5. the endpoints of the service in one region,
6. the user's role grant on the services project,
7. a system-scoped grant, only when ``system_roles`` is non-empty.

Shared objects (domains and roles) are always declared present, even when the
identity itself is absent, since other identities may use them.

Example YAML::

    service_identities:
      - title: neutron
        password: ${NEUTRON_PASSWORD}
        service_type: network
        public_url: http://7.7.7.7:9696
        internal_url: http://10.0.0.1:9696
        admin_url: http://192.168.0.1:9696
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from keystone_sync.config import get_settings
from keystone_sync.errors import ConfigError
from keystone_sync.models import DesiredResource, Ensure, build_resource


def _default_region() -> str:
    return get_settings().default_region


def _default_project() -> str:
    return get_settings().services_project


class ServiceIdentity(BaseModel):
    """Declared identity of one service."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1)
    ensure: Ensure = Ensure.PRESENT

    # User
    password: str | None = Field(default=None, repr=False)
    auth_name: str | None = None
    email: str | None = None

    # Catalog
    service_name: str | None = None
    service_type: str | None = None
    service_description: str | None = None
    region: str = Field(default_factory=_default_region)
    public_url: str | None = None
    internal_url: str | None = None
    admin_url: str | None = None

    # Scoping
    project: str = Field(default_factory=_default_project)
    user_domain: str | None = None
    project_domain: str | None = None
    default_domain: str | None = None
    roles: list[str] = Field(default_factory=lambda: ["admin"])
    system_scope: str = "all"
    system_roles: list[str] = Field(default_factory=list)

    # Toggles
    configure_user: bool = True
    configure_user_role: bool = True
    configure_service: bool = True
    configure_endpoint: bool = True

    @property
    def address(self) -> str:
        return f"service_identity[{self.title}]"

    @property
    def user_name(self) -> str:
        return self.auth_name or self.title

    @property
    def effective_user_domain(self) -> str | None:
        """Explicit user domain, then the default domain. None means implicit default."""
        return self.user_domain or self.default_domain

    @property
    def effective_project_domain(self) -> str | None:
        """Explicit project domain, then the default domain."""
        return self.project_domain or self.default_domain

    def check(self) -> None:
        """Fail with ConfigError on an incomplete declaration."""
        if self.configure_service and not self.service_type:
            raise ConfigError(f"{self.address}: service_type is required to configure a service")

        if self.configure_endpoint:
            if not self.service_type:
                raise ConfigError(
                    f"{self.address}: service_type is required to configure an endpoint"
                )
            missing = [
                name
                for name in ("admin_url", "internal_url", "public_url")
                if not getattr(self, name)
            ]
            if missing:
                raise ConfigError(
                    f"{self.address}: {', '.join(missing)} required to configure an endpoint"
                )

    def expand(self) -> list[DesiredResource]:
        """Validate, then expand into primitive resources in dependency order."""
        self.check()

        user_domain = self.effective_user_domain
        service_name = self.service_name or self.title
        resources: list[DesiredResource] = []

        if self.configure_user and user_domain:
            resources.append(build_resource("domain", user_domain))

        if self.configure_user_role:
            for role in dict.fromkeys(self.roles + self.system_roles):
                resources.append(build_resource("role", role))

        if self.configure_user:
            resources.append(
                build_resource(
                    "user",
                    self.user_name,
                    ensure=self.ensure,
                    domain=user_domain,
                    password=self.password,
                    email=self.email or f"{self.user_name}@localhost",
                )
            )

        if self.configure_service:
            resources.append(
                build_resource(
                    "service",
                    f"{service_name}::{self.service_type}",
                    ensure=self.ensure,
                    description=self.service_description or f"{service_name} service",
                )
            )

        if self.configure_endpoint:
            resources.append(
                build_resource(
                    "endpoint",
                    f"{self.region}/{service_name}::{self.service_type}",
                    ensure=self.ensure,
                    public_url=self.public_url,
                    internal_url=self.internal_url,
                    admin_url=self.admin_url,
                )
            )

        if self.configure_user_role:
            resources.append(
                build_resource(
                    "user_role",
                    f"{self.user_name}@{self.project}",
                    ensure=self.ensure,
                    user_domain=user_domain,
                    project_domain=self.effective_project_domain,
                    roles=list(self.roles),
                )
            )
            if self.system_roles:
                resources.append(
                    build_resource(
                        "user_role",
                        f"{self.user_name}@::::{self.system_scope}",
                        ensure=self.ensure,
                        user_domain=user_domain,
                        roles=list(self.system_roles),
                    )
                )

        return resources


def service_identity(title: str, **attrs: Any) -> ServiceIdentity:
    """Build a ServiceIdentity, reporting schema violations as ConfigError."""
    try:
        return ServiceIdentity(title=title, **attrs)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'identity'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid service_identity[{title}]: {problems}") from e
