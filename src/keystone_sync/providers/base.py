"""Provider base class.

A provider is bound to one declared resource and walks it through::

    UNKNOWN -> (probe) -> ABSENT | PRESENT
            -> (converge) -> CREATED | DESTROYED | UPDATED
            -> (flush) -> FLUSHED

Property setters never call the client. They record into ``pending``, which
``flush()`` applies as a single ``set`` call per remote object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from keystone_sync.errors import NotFoundError
from keystone_sync.models import DesiredResource, RemoteInstance

if TYPE_CHECKING:
    from keystone_sync.cache import InstanceCache
    from keystone_sync.credentials import Credentials
    from keystone_sync.executor import CommandExecutor

logger = logging.getLogger(__name__)


class ProviderState(str, Enum):
    UNKNOWN = "unknown"
    ABSENT = "absent"
    PRESENT = "present"
    CREATED = "created"
    DESTROYED = "destroyed"
    UPDATED = "updated"
    FLUSHED = "flushed"


@dataclass(frozen=True)
class Option:
    """How one managed attribute is passed to the client.

    Either a value flag (``--description <value>``) or a pair of switches
    (``--enable`` / ``--disable``).
    """

    flag: str | None = None
    switch: tuple[str, str] | None = None

    def render(self, value: Any) -> list[str]:
        if self.switch is not None:
            return [self.switch[0] if value else self.switch[1]]
        return [self.flag, str(value)]


ENABLED = Option(switch=("--enable", "--disable"))
DESCRIPTION = Option("--description")


def build_options(options: dict[str, Option], values: dict[str, Any]) -> list[str]:
    """Render the declared values, in option declaration order."""
    args: list[str] = []
    for attr, option in options.items():
        value = values.get(attr)
        if value is not None:
            args += option.render(value)
    return args


def managed_property(attr: str) -> property:
    """A property reading the remote value and queueing writes."""

    def getter(self: "Provider") -> Any:
        return self.current(attr)

    def setter(self: "Provider", value: Any) -> None:
        self.queue(attr, value)

    return property(getter, setter, doc=f"Remote {attr}; assignment is queued until flush().")


class Provider:
    """Base provider. Subclasses set ``kind``, ``noun`` and ``options``."""

    kind: ClassVar[str] = ""
    noun: ClassVar[str] = ""
    options: ClassVar[dict[str, Option]] = {}

    def __init__(
        self,
        resource: DesiredResource,
        executor: "CommandExecutor",
        cache: "InstanceCache",
        credentials: "Credentials | None" = None,
    ):
        self.resource = resource
        self.executor = executor
        self.cache = cache
        self.credentials = credentials if credentials is not None else executor.credentials
        self.state = ProviderState.UNKNOWN
        self.instance: RemoteInstance | None = None
        self.pending: dict[str, Any] = {}
        # Domain id resolved while probing; fills in create output that omits it
        self.probed_domain_id: str | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.resource.address} state={self.state.value}>"

    # -------------------------------------------------------------------------
    # Probe
    # -------------------------------------------------------------------------

    def probe(self) -> RemoteInstance | None:
        """Look up the remote object. NotFoundError means a dangling reference."""
        raise NotImplementedError

    def exists(self) -> bool:
        if self.state is ProviderState.UNKNOWN:
            self.instance = self.probe()
            self.state = ProviderState.PRESENT if self.instance else ProviderState.ABSENT
        return self.instance is not None

    @property
    def id(self) -> str:
        if not self.exists():
            raise NotFoundError(f"{self.resource.address} does not exist")
        return self.instance.id

    def domain_name(self) -> str:
        """Declared domain, or the default domain."""
        return getattr(self.resource, "domain", None) or self.cache.default_domain

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_args(self) -> list[str]:
        raise NotImplementedError

    def create(self) -> None:
        record = self.executor.show(self.noun, "create", args=self.create_args())
        self.instance = RemoteInstance.from_record(record)
        if self.instance.domain_id is None:
            self.instance.domain_id = self.probed_domain_id
        self.cache.record(self.kind, self.instance)
        self.state = ProviderState.CREATED
        logger.info("Created %s: %s (id=%s)", self.kind, self.resource.title, self.instance.id)

    def delete(self, instance_id: str) -> None:
        self.executor.run(self.noun, "delete", args=[instance_id])

    def destroy(self) -> None:
        try:
            instance_id = self.id
        except NotFoundError:
            self.state = ProviderState.DESTROYED
            return

        try:
            self.delete(instance_id)
        except NotFoundError:
            logger.debug("%s already gone", self.resource.address)

        self.cache.forget(self.kind, instance_id)
        self.instance = None
        self.pending.clear()
        self.state = ProviderState.DESTROYED
        logger.info("Deleted %s: %s (id=%s)", self.kind, self.resource.title, instance_id)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    def current(self, attr: str) -> Any:
        if self.instance is None:
            return None
        return getattr(self.instance, attr, None)

    def desired(self, attr: str) -> Any:
        return getattr(self.resource, attr, None)

    def queue(self, attr: str, value: Any) -> None:
        if attr not in self.options:
            raise AttributeError(f"{self.kind} has no managed attribute {attr!r}")
        self.pending[attr] = value
        self.state = ProviderState.UPDATED

    @staticmethod
    def same(current: Any, desired: Any) -> bool:
        if current in (None, "") and desired in (None, ""):
            return True
        return current == desired

    def diff(self) -> list[tuple[str, Any, Any]]:
        """(attr, current, desired) for every declared attribute out of sync."""
        changes = []
        for attr in self.options:
            desired = self.desired(attr)
            if desired is None:
                continue
            current = getattr(self, attr)
            if not self.same(current, desired):
                changes.append((attr, current, desired))
        return changes

    def converge(self) -> None:
        """Create, destroy or queue property changes to match the declaration."""
        if not self.resource.present:
            if self.exists():
                self.destroy()
            return

        if not self.exists():
            self.create()
            return

        for attr, _, desired in self.diff():
            setattr(self, attr, desired)

    def set_args(self) -> list[str]:
        return build_options(self.options, self.pending) + [self.id]

    def apply_pending(self) -> None:
        self.executor.run(self.noun, "set", args=self.set_args())

    def flush(self) -> None:
        """Apply the pending change set, then mark the provider FLUSHED."""
        if self.pending:
            self.apply_pending()
            if self.instance is not None:
                for attr, value in self.pending.items():
                    if hasattr(self.instance, attr):
                        setattr(self.instance, attr, value)
            logger.info(
                "Updated %s: %s (%s)",
                self.kind,
                self.resource.title,
                ", ".join(sorted(self.pending)),
            )
            self.pending.clear()
        self.state = ProviderState.FLUSHED
