"""Declared-resource schema.

Each kind is a pydantic model with explicit typed fields. Titles carry the
identity of a resource and may embed a qualifier after ``::``::

    user:       alice::users          (name alice in domain users)
    role:       admin                 (global role)
    service:    nova::compute         (name nova, type compute)
    endpoint:   RegionOne/nova::compute
    user_role:  alice::users@services::Default
                alice@::users         (domain grant)
                alice@::::all         (system grant)

An explicit attribute always wins over the title-derived value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from keystone_sync.config import get_settings
from keystone_sync.errors import ConfigError

SEPARATOR = "::"


class Ensure(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


def split_title(title: str) -> tuple[str, str | None]:
    """Split ``name::qualifier`` into its parts."""
    name, sep, qualifier = title.partition(SEPARATOR)
    return name, (qualifier or None) if sep else None


def _parse_bool(raw: Any) -> bool | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("true", "yes", "1", "enabled")


# -----------------------------------------------------------------------------
# Remote side
# -----------------------------------------------------------------------------


@dataclass
class RemoteInstance:
    """An object as reported by a listing or show call."""

    id: str
    name: str | None = None
    domain_id: str | None = None
    enabled: bool | None = None
    email: str | None = None
    description: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: dict[str, str]) -> "RemoteInstance":
        """Build from a parsed shell or CSV record.

        Empty strings and the client's ``None`` are reported as None. A
        ``domain`` column (as printed by some listings) is treated as the
        domain id.
        """
        values = {k: (v if v not in ("", "None") else None) for k, v in record.items()}
        known = {"id", "name", "domain_id", "domain", "enabled", "email", "description"}
        return cls(
            id=values.get("id") or "",
            name=values.get("name"),
            domain_id=values.get("domain_id") or values.get("domain"),
            enabled=_parse_bool(values.get("enabled")),
            email=values.get("email"),
            description=values.get("description"),
            extra={k: v for k, v in values.items() if k not in known and v is not None},
        )


# -----------------------------------------------------------------------------
# Declared side
# -----------------------------------------------------------------------------


class DesiredResource(BaseModel):
    """Base class for declared resources."""

    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[str] = ""
    priority: ClassVar[int] = 100

    title: str = Field(..., min_length=1)
    ensure: Ensure = Ensure.PRESENT

    @property
    def address(self) -> str:
        return f"{self.kind}[{self.title}]"

    @property
    def present(self) -> bool:
        return self.ensure is Ensure.PRESENT

    def identity_key(self, default_domain: str) -> tuple:
        raise NotImplementedError

    def declared(self) -> dict[str, Any]:
        """Attributes explicitly declared (or defaulted) besides title/ensure."""
        return {
            k: v
            for k, v in self.model_dump(exclude={"title", "ensure"}).items()
            if v is not None
        }


class _NamedInDomain(DesiredResource):
    """A resource addressed as ``name[::domain]``."""

    name: str = ""
    domain: str | None = None

    @model_validator(mode="after")
    def _split(self) -> "_NamedInDomain":
        name, qualifier = split_title(self.title)
        if not self.name:
            self.name = name
        if self.domain is None:
            self.domain = qualifier
        return self

    def identity_key(self, default_domain: str) -> tuple:
        return (self.kind, self.name, self.domain or default_domain)


class DomainResource(DesiredResource):
    kind: ClassVar[str] = "domain"
    priority: ClassVar[int] = 10

    name: str = ""
    enabled: bool = True
    description: str | None = None

    @model_validator(mode="after")
    def _split(self) -> "DomainResource":
        if not self.name:
            self.name = self.title
        return self

    def identity_key(self, default_domain: str) -> tuple:
        return (self.kind, self.name)


class ProjectResource(_NamedInDomain):
    kind: ClassVar[str] = "project"
    priority: ClassVar[int] = 20

    enabled: bool = True
    description: str | None = None


class RoleResource(_NamedInDomain):
    """A role. Without a domain the role is global."""

    kind: ClassVar[str] = "role"
    priority: ClassVar[int] = 30

    def identity_key(self, default_domain: str) -> tuple:
        return (self.kind, self.name, self.domain)


class UserResource(_NamedInDomain):
    kind: ClassVar[str] = "user"
    priority: ClassVar[int] = 40

    enabled: bool = True
    password: str | None = Field(default=None, repr=False)
    replace_password: bool = True
    email: str | None = None
    description: str | None = None


class ServiceResource(DesiredResource):
    kind: ClassVar[str] = "service"
    priority: ClassVar[int] = 50

    name: str = ""
    type: str | None = None
    description: str | None = None
    enabled: bool = True

    @model_validator(mode="after")
    def _split(self) -> "ServiceResource":
        name, qualifier = split_title(self.title)
        if not self.name:
            self.name = name
        if self.type is None:
            self.type = qualifier
        if not self.type:
            raise ValueError(f"service {self.title!r} needs a type (name::type)")
        return self

    def identity_key(self, default_domain: str) -> tuple:
        return (self.kind, self.name, self.type)


class EndpointResource(DesiredResource):
    """The public/internal/admin endpoints of one service in one region."""

    kind: ClassVar[str] = "endpoint"
    priority: ClassVar[int] = 60

    INTERFACES: ClassVar[tuple[str, ...]] = ("public", "internal", "admin")

    name: str = ""
    type: str | None = None
    region: str | None = None
    public_url: str | None = None
    internal_url: str | None = None
    admin_url: str | None = None

    @model_validator(mode="after")
    def _split(self) -> "EndpointResource":
        region, sep, rest = self.title.rpartition("/")
        name, qualifier = split_title(rest)
        if not self.name:
            self.name = name
        if self.type is None:
            self.type = qualifier
        if self.region is None:
            self.region = region if sep and region else None
        if not self.type:
            raise ValueError(f"endpoint {self.title!r} needs a service type (region/name::type)")
        return self

    def effective_region(self, default_region: str) -> str:
        return self.region or default_region

    def urls(self) -> dict[str, str]:
        """Declared URLs by interface."""
        return {
            interface: url
            for interface in self.INTERFACES
            if (url := getattr(self, f"{interface}_url"))
        }

    def identity_key(self, default_domain: str) -> tuple:
        return (
            self.kind,
            self.effective_region(get_settings().default_region),
            self.name,
            self.type,
        )


class UserRoleResource(DesiredResource):
    """Role grants of one user on one project, domain or system scope."""

    kind: ClassVar[str] = "user_role"
    priority: ClassVar[int] = 70

    roles: list[str] = Field(default_factory=list)
    user_domain: str | None = None
    project_domain: str | None = None

    user: str = ""
    project: str | None = None
    domain: str | None = None
    system: str | None = None

    @model_validator(mode="after")
    def _split(self) -> "UserRoleResource":
        user_part, sep, scope_part = self.title.rpartition("@")
        if not sep or not user_part or not scope_part:
            raise ValueError(
                f"user_role title {self.title!r} must be user@project, "
                "user@::domain or user@::::system"
            )

        user, user_domain = split_title(user_part)
        if not self.user:
            self.user = user
        if self.user_domain is None:
            self.user_domain = user_domain

        if scope_part.startswith(SEPARATOR * 2):
            self.system = self.system or scope_part[len(SEPARATOR) * 2:]
        elif scope_part.startswith(SEPARATOR):
            self.domain = self.domain or scope_part[len(SEPARATOR):]
        else:
            project, project_domain = split_title(scope_part)
            self.project = self.project or project
            if self.project_domain is None:
                self.project_domain = project_domain

        scopes = [s for s in (self.project, self.domain, self.system) if s]
        if len(scopes) != 1:
            raise ValueError(f"user_role {self.title!r} needs exactly one scope")
        return self

    @property
    def scope(self) -> tuple[str, str]:
        if self.system:
            return ("system", self.system)
        if self.domain:
            return ("domain", self.domain)
        return ("project", self.project or "")

    def identity_key(self, default_domain: str) -> tuple:
        scope_kind, scope_name = self.scope
        scope_domain = (
            (self.project_domain or default_domain) if scope_kind == "project" else None
        )
        return (
            self.kind,
            self.user,
            self.user_domain or default_domain,
            scope_kind,
            scope_name,
            scope_domain,
        )


RESOURCE_TYPES: dict[str, type[DesiredResource]] = {
    cls.kind: cls
    for cls in (
        DomainResource,
        ProjectResource,
        RoleResource,
        UserResource,
        ServiceResource,
        EndpointResource,
        UserRoleResource,
    )
}

KIND_ALIASES = {
    "tenant": "project",
    **{f"keystone_{kind}": kind for kind in RESOURCE_TYPES},
    "keystone_tenant": "project",
}


def canonical_kind(kind: str) -> str:
    """Map a kind name (or one of its aliases) onto a registered kind."""
    normalized = kind.strip().lower()
    normalized = KIND_ALIASES.get(normalized, normalized)
    if normalized not in RESOURCE_TYPES:
        raise ConfigError(
            f"Unknown resource kind {kind!r}; expected one of {sorted(RESOURCE_TYPES)}"
        )
    return normalized


def build_resource(kind: str, title: str, **attrs: Any) -> DesiredResource:
    """Build and validate one declared resource.

    Raises ConfigError on any schema violation, before any remote call.
    """
    cls = RESOURCE_TYPES[canonical_kind(kind)]
    try:
        return cls(title=title, **attrs)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'resource'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid {cls.kind}[{title}]: {problems}") from e
