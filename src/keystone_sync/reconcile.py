"""Reconciliation driver.

Builds a validated, ordered catalog from a manifest, then walks every
resource through its provider: probe, converge, flush. A failing resource is
recorded and the run moves on; only an authentication failure aborts it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from keystone_sync.cache import InstanceCache, detect_duplicates
from keystone_sync.composite import service_identity
from keystone_sync.errors import AuthError, ConfigError, KeystoneSyncError, NotFoundError
from keystone_sync.models import DesiredResource, build_resource
from keystone_sync.providers import Provider, ProviderState, provider_for

if TYPE_CHECKING:
    from keystone_sync.credentials import Credentials
    from keystone_sync.executor import CommandExecutor
    from keystone_sync.manifest import Manifest

logger = structlog.get_logger()

SECRET_ATTRIBUTES = {"password"}


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------


@dataclass
class Catalog:
    """Validated resources in apply order, plus the declarations that failed validation."""

    resources: list[DesiredResource] = field(default_factory=list)
    rejected: list[tuple[str, str]] = field(default_factory=list)  # (address, error)

    def __len__(self) -> int:
        return len(self.resources)


def build_catalog(manifest: "Manifest", default_domain: str | None = None) -> Catalog:
    """Expand, validate and order every declaration in a manifest.

    A declaration that fails validation is rejected on its own; the rest of
    the catalog is still built. Duplicate identities abort the whole build.
    Present resources come first in dependency order, then absent ones in
    reverse order so members are removed before their domain.

    Raises:
        DuplicateResourceError: Two distinct declarations share an identity
    """
    catalog = Catalog()
    declared: list[DesiredResource] = []

    for entry in manifest.resources:
        attrs = dict(entry)
        kind = str(attrs.pop("kind"))
        title = str(attrs.pop("title"))
        try:
            declared.append(build_resource(kind, title, **attrs))
        except ConfigError as e:
            catalog.rejected.append((f"{kind}[{title}]", str(e)))

    for entry in manifest.service_identities:
        attrs = dict(entry)
        title = str(attrs.pop("title"))
        try:
            declared.extend(service_identity(title, **attrs).expand())
        except ConfigError as e:
            catalog.rejected.append((f"service_identity[{title}]", str(e)))

    unique = detect_duplicates(declared, default_domain)
    # sorted() is stable, so expansion order survives within a kind.
    # Removals run last and dependents first, while their domains still resolve.
    present = sorted((r for r in unique if r.present), key=lambda r: r.priority)
    absent = sorted((r for r in unique if not r.present), key=lambda r: -r.priority)
    catalog.resources = present + absent
    return catalog


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass
class ResourceOutcome:
    """What happened (or would happen) to one resource."""

    address: str
    action: str  # "create", "update", "destroy", "unchanged", "blocked", "failed"
    changes: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class ReconcileResult:
    """Result of one reconciliation run."""

    dry_run: bool = False
    outcomes: list[ResourceOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def add(self, outcome: ResourceOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.error and outcome.action == "failed":
            self.errors.append(f"{outcome.address}: {outcome.error}")

    def by_action(self, action: str) -> list[str]:
        return [o.address for o in self.outcomes if o.action == action]

    @property
    def success(self) -> bool:
        """Check if the run completed without errors."""
        return len(self.errors) == 0

    @property
    def has_changes(self) -> bool:
        return any(o.action in ("create", "update", "destroy") for o in self.outcomes)

    def summary(self) -> str:
        """Get a human-readable summary of the result."""
        lines = []
        verb = {
            "create": "Would create" if self.dry_run else "Created",
            "update": "Would update" if self.dry_run else "Updated",
            "destroy": "Would delete" if self.dry_run else "Deleted",
        }

        for action in ("create", "update", "destroy"):
            for outcome in (o for o in self.outcomes if o.action == action):
                lines.append(f"{verb[action]} {outcome.address}")
                for change in outcome.changes:
                    lines.append(f"  ~ {change}")

        blocked = [o for o in self.outcomes if o.action == "blocked"]
        for outcome in blocked:
            lines.append(f"Blocked {outcome.address}: {outcome.error}")

        unchanged = self.by_action("unchanged")
        if unchanged:
            lines.append(f"Unchanged: {len(unchanged)} resources")

        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
            for error in self.errors:
                lines.append(f"  - {error}")

        return "\n".join(lines) if lines else "No resources"


def _describe(attr: str, current: Any, desired: Any) -> str:
    if attr in SECRET_ATTRIBUTES:
        return f"{attr}: (changed)"
    return f"{attr}: {current!r} -> {desired!r}"


# -----------------------------------------------------------------------------
# Reconciler
# -----------------------------------------------------------------------------


class Reconciler:
    """Drive a catalog to convergence, one resource at a time."""

    def __init__(
        self,
        executor: "CommandExecutor",
        cache: InstanceCache | None = None,
        credentials: "Credentials | None" = None,
        dry_run: bool = False,
        token_retries: int | None = None,
    ):
        self.executor = executor
        self.cache = cache or InstanceCache(executor)
        self.credentials = credentials if credentials is not None else executor.credentials
        self.dry_run = dry_run
        self.token_retries = token_retries

    def provider(self, resource: DesiredResource) -> Provider:
        return provider_for(resource, self.executor, self.cache, self.credentials)

    def plan(self, provider: Provider) -> ResourceOutcome:
        """Probe only and report the action that would be taken."""
        address = provider.resource.address
        exists = provider.exists()

        if not provider.resource.present:
            return ResourceOutcome(address, "destroy" if exists else "unchanged")
        if not exists:
            return ResourceOutcome(address, "create")

        changes = [_describe(*change) for change in provider.diff()]
        return ResourceOutcome(address, "update" if changes else "unchanged", changes)

    def converge(self, provider: Provider) -> ResourceOutcome:
        """Probe, converge and flush one resource."""
        address = provider.resource.address
        existed = provider.exists()

        provider.converge()
        state = provider.state
        changes = [
            _describe(attr, provider.current(attr), value)
            for attr, value in provider.pending.items()
        ]
        provider.flush()

        if state is ProviderState.CREATED:
            return ResourceOutcome(address, "create")
        if state is ProviderState.DESTROYED:
            return ResourceOutcome(address, "destroy" if existed else "unchanged")
        if state is ProviderState.UPDATED:
            return ResourceOutcome(address, "update", changes)
        return ResourceOutcome(address, "unchanged")

    def run(self, catalog: Catalog) -> ReconcileResult:
        """Reconcile every resource in the catalog.

        Raises:
            AuthError: The credentials were rejected; nothing else can proceed
        """
        result = ReconcileResult(dry_run=self.dry_run)
        for address, message in catalog.rejected:
            result.errors.append(f"{address}: {message}")

        if not catalog.resources:
            return result

        if self.credentials is not None:
            self.credentials.token(self.executor, retries=self.token_retries)

        for resource in catalog.resources:
            provider = self.provider(resource)
            try:
                outcome = self.plan(provider) if self.dry_run else self.converge(provider)
            except AuthError:
                raise
            except NotFoundError as e:
                action = "blocked" if self.dry_run else "failed"
                outcome = ResourceOutcome(resource.address, action, error=str(e))
            except KeystoneSyncError as e:
                outcome = ResourceOutcome(resource.address, "failed", error=str(e))

            result.add(outcome)
            log = logger.warning if outcome.error else logger.info
            log(
                "resource_reconciled",
                resource=outcome.address,
                action=outcome.action,
                changes=outcome.changes or None,
                error=outcome.error,
                dry_run=self.dry_run,
            )

        logger.info(
            "reconcile_finished",
            resources=len(catalog.resources),
            errors=len(result.errors),
            dry_run=self.dry_run,
            **self.cache.stats,
        )
        return result
