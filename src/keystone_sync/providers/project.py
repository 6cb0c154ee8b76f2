"""Projects (tenants)."""

from __future__ import annotations

from keystone_sync.models import RemoteInstance
from keystone_sync.providers.base import DESCRIPTION, ENABLED, Provider, build_options, managed_property


class ProjectProvider(Provider):
    kind = "project"
    noun = "project"
    options = {"enabled": ENABLED, "description": DESCRIPTION}

    enabled = managed_property("enabled")
    description = managed_property("description")

    def probe(self) -> RemoteInstance | None:
        self.probed_domain_id = self.cache.domain_id(self.resource.domain)
        return self.cache.find("project", self.resource.name, self.probed_domain_id)

    def create_args(self) -> list[str]:
        return (
            [self.resource.name]
            + build_options(self.options, self.resource.declared())
            + ["--domain", self.domain_name()]
        )
