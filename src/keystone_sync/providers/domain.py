"""Domains."""

from __future__ import annotations

from keystone_sync.models import RemoteInstance
from keystone_sync.providers.base import DESCRIPTION, ENABLED, Provider, build_options, managed_property


class DomainProvider(Provider):
    kind = "domain"
    noun = "domain"
    options = {"enabled": ENABLED, "description": DESCRIPTION}

    enabled = managed_property("enabled")
    description = managed_property("description")

    def probe(self) -> RemoteInstance | None:
        return self.cache.find("domain", self.resource.name)

    def create_args(self) -> list[str]:
        return [self.resource.name] + build_options(self.options, self.resource.declared())

    def delete(self, instance_id: str) -> None:
        # Enabled domains cannot be deleted.
        if self.instance is not None and self.instance.enabled is not False:
            self.executor.run(self.noun, "set", args=["--disable", instance_id])
        super().delete(instance_id)
