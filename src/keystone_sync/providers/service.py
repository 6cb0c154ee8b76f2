"""Service catalog entries, addressed by name and type."""

from __future__ import annotations

from keystone_sync.models import RemoteInstance
from keystone_sync.providers.base import DESCRIPTION, ENABLED, Provider, build_options, managed_property


class ServiceProvider(Provider):
    kind = "service"
    noun = "service"
    options = {"enabled": ENABLED, "description": DESCRIPTION}

    enabled = managed_property("enabled")
    description = managed_property("description")

    def probe(self) -> RemoteInstance | None:
        return self.cache.find("service", self.resource.name, self.resource.type)

    def create_args(self) -> list[str]:
        values = self.resource.declared()
        return [self.resource.type, "--name", self.resource.name] + build_options(
            {"description": DESCRIPTION, "enabled": ENABLED}, values
        )

    def create(self) -> None:
        super().create()
        # Index by the declared type even if the output omits it.
        self.instance.extra.setdefault("type", self.resource.type)
        self.cache.record(self.kind, self.instance)
