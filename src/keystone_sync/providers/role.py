"""Roles. A role without a domain is global."""

from __future__ import annotations

from keystone_sync.models import RemoteInstance
from keystone_sync.providers.base import Provider


class RoleProvider(Provider):
    kind = "role"
    noun = "role"
    options = {}

    def probe(self) -> RemoteInstance | None:
        if self.resource.domain:
            self.probed_domain_id = self.cache.domain_id(self.resource.domain)
        return self.cache.find("role", self.resource.name, self.probed_domain_id)

    def create_args(self) -> list[str]:
        args = [self.resource.name]
        if self.resource.domain:
            args += ["--domain", self.resource.domain]
        return args
