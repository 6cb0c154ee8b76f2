"""Instance cache for remote identity objects.

Listings are issued at most once per kind (and per domain for domain-scoped
roles) until ``reset()`` is called. Objects created during a run are recorded
so later probes see them without another listing.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Iterable

import structlog

from keystone_sync.config import get_settings
from keystone_sync.errors import DuplicateResourceError, NotFoundError
from keystone_sync.models import DesiredResource, RemoteInstance

if TYPE_CHECKING:
    from keystone_sync.executor import CommandExecutor

logger = structlog.get_logger()

# kind -> extra listing arguments
LISTINGS: dict[str, list[str]] = {
    "domain": [],
    "project": ["--long"],
    "role": [],
    "user": ["--long"],
    "service": ["--long"],
    "endpoint": [],
}


def _qualifier(kind: str, instance: RemoteInstance) -> str | None:
    if kind == "service":
        return instance.extra.get("type")
    if kind == "domain":
        return None
    return instance.domain_id


class InstanceCache:
    """Memoized listings plus a (kind, name, qualifier) index.

    The qualifier is the domain id for projects, users and domain roles, the
    service type for services, and None for domains and global roles.
    Endpoints are listed but not indexed.
    """

    def __init__(self, executor: "CommandExecutor", default_domain: str | None = None):
        """Initialize the cache.

        Args:
            executor: Command executor used for listings and lookups
            default_domain: Domain name used when none is given
        """
        self._executor = executor
        self.default_domain = default_domain or get_settings().default_domain
        self._lock = threading.RLock()
        self._instances: dict[tuple[str, str | None], list[RemoteInstance]] = {}
        self._index: dict[tuple[str, str, str | None], RemoteInstance] = {}
        self._listings = 0
        self._hits = 0
        self._misses = 0
        self._loaded: set[tuple[str, str | None]] = set()
        # Users known not to exist, as (name, domain id)
        self._missing_users: set[tuple[str, str | None]] = set()

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------

    def instances(self, kind: str, domain_id: str | None = None) -> list[RemoteInstance]:
        """Return the remote instances of a kind, listing them on first use.

        Args:
            kind: Resource kind
            domain_id: Restrict a role listing to one domain
        """
        if kind not in LISTINGS:
            raise ValueError(f"Kind {kind!r} cannot be listed")

        scope = domain_id if kind == "role" else None
        key = (kind, scope)
        with self._lock:
            if key in self._loaded:
                self._hits += 1
                return list(self._instances[key])

            args = list(LISTINGS[kind])
            if scope:
                args += ["--domain", scope]
            records = self._executor.listing(kind, args=args)
            self._listings += 1
            self._misses += 1

            listed = [RemoteInstance.from_record(r) for r in records]
            if scope:
                for inst in listed:
                    inst.domain_id = scope

            self._instances[key] = listed
            self._loaded.add(key)
            if kind != "endpoint":
                for inst in listed:
                    self._index_instance(kind, inst)

            logger.debug("Listed instances", kind=kind, domain_id=scope, count=len(listed))
            return list(listed)

    def _index_instance(self, kind: str, instance: RemoteInstance) -> None:
        if instance.name is not None:
            self._index[(kind, instance.name, _qualifier(kind, instance))] = instance

    def record(self, kind: str, instance: RemoteInstance) -> None:
        """Record a locally created (or looked up) instance."""
        scope = instance.domain_id if kind == "role" else None
        with self._lock:
            bucket = self._instances.setdefault((kind, scope), [])
            bucket[:] = [i for i in bucket if i.id != instance.id]
            bucket.append(instance)
            if kind == "user":
                self._missing_users.discard((instance.name, instance.domain_id))
            if kind != "endpoint":
                self._index_instance(kind, instance)
            logger.debug("Recorded instance", kind=kind, id=instance.id, name=instance.name)

    def forget(self, kind: str, instance_id: str) -> None:
        """Drop a destroyed instance."""
        with self._lock:
            for (k, _), bucket in self._instances.items():
                if k == kind:
                    bucket[:] = [i for i in bucket if i.id != instance_id]
            for key in [k for k, v in self._index.items() if k[0] == kind and v.id == instance_id]:
                del self._index[key]

    def reset(self, kind: str | None = None) -> None:
        """Clear memoized state for one kind, or for all kinds.

        Args:
            kind: If provided, only this kind is cleared
        """
        with self._lock:
            if kind is None:
                self._instances.clear()
                self._index.clear()
                self._loaded.clear()
                self._missing_users.clear()
                logger.info("Instance cache cleared")
                return

            for key in [k for k in self._instances if k[0] == kind]:
                del self._instances[key]
            for key in [k for k in self._index if k[0] == kind]:
                del self._index[key]
            self._loaded = {k for k in self._loaded if k[0] != kind}
            if kind == "user":
                self._missing_users.clear()
            logger.info("Instance cache invalidated", kind=kind)

    @property
    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "listings": self._listings,
                "hits": self._hits,
                "misses": self._misses,
                "indexed": len(self._index),
            }

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find(self, kind: str, name: str, qualifier: str | None = None) -> RemoteInstance | None:
        """Find an instance by name and qualifier.

        Users are looked up with ``user show`` instead of a full listing.
        """
        with self._lock:
            found = self._index.get((kind, name, qualifier))
            if found is not None:
                self._hits += 1
                return found

            if kind == "user":
                if (name, qualifier) in self._missing_users:
                    self._hits += 1
                    return None
                return self._show_user(name, qualifier)

            self.instances(kind, qualifier if kind == "role" else None)
            return self._index.get((kind, name, qualifier))

    def _show_user(self, name: str, domain_id: str | None) -> RemoteInstance | None:
        args = [name]
        if domain_id:
            args += ["--domain", domain_id]
        try:
            record = self._executor.show("user", args=args)
        except NotFoundError:
            self._misses += 1
            self._missing_users.add((name, domain_id))
            return None

        self._misses += 1
        instance = RemoteInstance.from_record(record)
        if instance.domain_id is None:
            instance.domain_id = domain_id
        self.record("user", instance)
        return instance

    def domain_id(self, name_or_id: str | None = None) -> str:
        """Resolve a domain name (or id) to its id.

        Raises NotFoundError if no such domain exists.
        """
        wanted = name_or_id or self.default_domain
        domains = self.instances("domain")
        for inst in domains:
            if inst.id == wanted:
                return inst.id
        for inst in domains:
            if inst.name == wanted:
                return inst.id
        raise NotFoundError(f"Could not find domain: {wanted}")

    def resolve_id(self, kind: str, name: str, domain: str | None = None) -> str:
        """Resolve an object's id.

        ``domain`` is a domain name or id for domain-owned kinds and the
        service type for services. Raises NotFoundError when absent.
        """
        if kind == "domain":
            return self.domain_id(name)

        if kind == "service":
            qualifier = domain
        elif kind == "role" and domain is None:
            qualifier = None
        else:
            qualifier = self.domain_id(domain)

        found = self.find(kind, name, qualifier)
        if found is None:
            where = f" in {domain}" if domain else ""
            raise NotFoundError(f"Could not find {kind}: {name}{where}")
        return found.id


def detect_duplicates(
    resources: Iterable[DesiredResource],
    default_domain: str | None = None,
) -> list[DesiredResource]:
    """Reject distinct declarations that share one identity.

    Identical declarations are collapsed into one. Returns the remaining
    resources in declaration order.

    Raises DuplicateResourceError on a collision.
    """
    default = default_domain or get_settings().default_domain
    seen: dict[tuple, DesiredResource] = {}
    unique: list[DesiredResource] = []

    for resource in resources:
        identity = resource.identity_key(default)
        previous = seen.get(identity)
        if previous is None:
            seen[identity] = resource
            unique.append(resource)
            continue
        if previous != resource:
            raise DuplicateResourceError(identity, [previous.title, resource.title])

    return unique
