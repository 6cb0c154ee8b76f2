"""Endpoints of one service in one region.

The identity service stores one endpoint object per interface, so this
provider manages up to three remote objects. Its id is the comma-joined list
of their ids.
"""

from __future__ import annotations

import logging
from typing import Any

from keystone_sync.config import get_settings
from keystone_sync.errors import NotFoundError
from keystone_sync.models import EndpointResource, RemoteInstance
from keystone_sync.providers.base import Option, Provider, ProviderState, managed_property

logger = logging.getLogger(__name__)


class EndpointProvider(Provider):
    kind = "endpoint"
    noun = "endpoint"
    options = {
        f"{interface}_url": Option("--url") for interface in EndpointResource.INTERFACES
    }

    public_url = managed_property("public_url")
    internal_url = managed_property("internal_url")
    admin_url = managed_property("admin_url")

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.endpoints: dict[str, RemoteInstance] = {}

    @property
    def region(self) -> str:
        return self.resource.effective_region(get_settings().default_region)

    def _service_id(self) -> str:
        service = self.cache.find("service", self.resource.name, self.resource.type)
        if service is None:
            raise NotFoundError(
                f"Could not find service: {self.resource.name} ({self.resource.type})"
            )
        return service.id

    def probe(self) -> RemoteInstance | None:
        self.endpoints = {}
        for inst in self.cache.instances("endpoint"):
            if (
                inst.extra.get("service_name") == self.resource.name
                and inst.extra.get("service_type") == self.resource.type
                and inst.extra.get("region") == self.region
            ):
                self.endpoints[inst.extra.get("interface", "")] = inst
        return self._aggregate()

    def _aggregate(self) -> RemoteInstance | None:
        if not self.endpoints:
            return None
        ids = [self.endpoints[i].id for i in EndpointResource.INTERFACES if i in self.endpoints]
        return RemoteInstance(id=",".join(ids), name=self.resource.name)

    def current(self, attr: str) -> Any:
        endpoint = self.endpoints.get(attr.removesuffix("_url"))
        return endpoint.extra.get("url") if endpoint else None

    def _create_one(self, service_id: str, interface: str, url: str) -> None:
        record = self.executor.show(
            self.noun,
            "create",
            args=[service_id, interface, url, "--region", self.region],
        )
        inst = RemoteInstance.from_record(record)
        inst.extra.update(
            service_name=self.resource.name,
            service_type=self.resource.type,
            region=self.region,
            interface=interface,
            url=url,
        )
        self.endpoints[interface] = inst
        self.cache.record(self.kind, inst)
        logger.info("Created endpoint: %s %s (id=%s)", self.resource.title, interface, inst.id)

    def create(self) -> None:
        service_id = self._service_id()
        for interface, url in self.resource.urls().items():
            self._create_one(service_id, interface, url)
        self.instance = self._aggregate()
        self.state = ProviderState.CREATED

    def delete(self, instance_id: str) -> None:
        self.executor.run(self.noun, "delete", args=instance_id.split(","))

    def destroy(self) -> None:
        self.exists()
        ids = [e.id for e in self.endpoints.values()]
        super().destroy()
        for endpoint_id in ids:
            self.cache.forget(self.kind, endpoint_id)
        self.endpoints = {}

    def apply_pending(self) -> None:
        """One call per changed interface: set the URL, or create the endpoint."""
        service_id = None
        for attr in self.options:
            if attr not in self.pending:
                continue
            interface = attr.removesuffix("_url")
            url = self.pending[attr]
            endpoint = self.endpoints.get(interface)
            if endpoint is not None:
                self.executor.run(self.noun, "set", args=["--url", url, endpoint.id])
                endpoint.extra["url"] = url
            else:
                service_id = service_id or self._service_id()
                self._create_one(service_id, interface, url)
        self.instance = self._aggregate()
