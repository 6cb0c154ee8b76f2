"""Role grants of one user on one project, domain or system scope.

Each granted role is a separate assignment on the remote side, so changes are
applied with one ``role add`` / ``role remove`` per role.
"""

from __future__ import annotations

import logging
from typing import Any

from keystone_sync.errors import NotFoundError
from keystone_sync.models import RemoteInstance
from keystone_sync.providers.base import Option, Provider, ProviderState, managed_property

logger = logging.getLogger(__name__)


class UserRoleProvider(Provider):
    kind = "user_role"
    noun = "role"
    options = {"roles": Option("--role")}

    roles = managed_property("roles")

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.assigned: list[str] = []

    # -------------------------------------------------------------------------
    # References
    # -------------------------------------------------------------------------

    def _find_user_id(self) -> str | None:
        domain_id = self.cache.domain_id(self.resource.user_domain)
        user = self.cache.find("user", self.resource.user, domain_id)
        return user.id if user else None

    def _find_scope(self) -> list[str] | None:
        scope_kind, scope_name = self.resource.scope
        if scope_kind == "system":
            return ["--system", scope_name]
        if scope_kind == "domain":
            return ["--domain", self.cache.domain_id(scope_name)]

        domain_id = self.cache.domain_id(self.resource.project_domain)
        project = self.cache.find("project", scope_name, domain_id)
        return ["--project", project.id] if project else None

    def _references(self) -> tuple[str, list[str]]:
        user_id = self._find_user_id()
        if user_id is None:
            raise NotFoundError(f"Could not find user: {self.resource.user}")
        scope = self._find_scope()
        if scope is None:
            raise NotFoundError(f"Could not find project: {self.resource.scope[1]}")
        return user_id, scope

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def probe(self) -> RemoteInstance | None:
        self.assigned = []
        user_id = self._find_user_id()
        scope = self._find_scope()
        if user_id is None or scope is None:
            return None

        rows = self.executor.listing(
            "role assignment", args=["--names", "--user", user_id, *scope]
        )
        self.assigned = sorted({row["role"] for row in rows if row.get("role")})
        # With no roles declared, existing user and scope are all there is to match.
        if not self.assigned and (self.resource.roles or not self.resource.present):
            return None
        return RemoteInstance(id=f"{user_id}@{scope[-1]}", name=self.resource.title)

    def _grant(self, verb: str, role: str, user_id: str, scope: list[str]) -> None:
        self.executor.run(self.noun, verb, args=[role, *scope, "--user", user_id])
        logger.info(
            "%s role %s for %s", "Granted" if verb == "add" else "Revoked", role, self.resource.title
        )

    def create(self) -> None:
        user_id, scope = self._references()
        for role in self.resource.roles:
            self._grant("add", role, user_id, scope)
        self.assigned = sorted(set(self.resource.roles))
        self.instance = RemoteInstance(id=f"{user_id}@{scope[-1]}", name=self.resource.title)
        self.state = ProviderState.CREATED

    def destroy(self) -> None:
        if self.exists():
            user_id, scope = self._references()
            for role in self.assigned:
                self._grant("remove", role, user_id, scope)
        self.assigned = []
        self.instance = None
        self.pending.clear()
        self.state = ProviderState.DESTROYED

    def current(self, attr: str) -> Any:
        return list(self.assigned)

    @staticmethod
    def same(current: Any, desired: Any) -> bool:
        return set(current or []) == set(desired or [])

    def apply_pending(self) -> None:
        user_id, scope = self._references()
        wanted = set(self.pending["roles"])
        have = set(self.assigned)
        for role in sorted(wanted - have):
            self._grant("add", role, user_id, scope)
        for role in sorted(have - wanted):
            self._grant("remove", role, user_id, scope)
        self.assigned = sorted(wanted)
