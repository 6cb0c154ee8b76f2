"""Users.

Users are looked up with ``user show`` in their resolved domain. The password
is never read back from the identity service; instead a ``token issue`` call
with the candidate password tells whether it is still valid.
"""

from __future__ import annotations

import logging
import re

from keystone_sync.credentials import Credentials, Scheme
from keystone_sync.errors import AuthError, ConfigError
from keystone_sync.models import RemoteInstance
from keystone_sync.providers.base import (
    DESCRIPTION,
    ENABLED,
    Option,
    Provider,
    build_options,
    managed_property,
)

logger = logging.getLogger(__name__)

_VERSION_SUFFIX = re.compile(r"/v[23](\.\d+)?/?$")


def v3_auth_url(auth_url: str) -> str:
    """Point an auth URL at the v3 API (password probes are always v3)."""
    base = _VERSION_SUFFIX.sub("", auth_url.rstrip("/"))
    return f"{base}/v3"


class UserProvider(Provider):
    kind = "user"
    noun = "user"
    options = {
        "enabled": ENABLED,
        "password": Option("--password"),
        "description": DESCRIPTION,
        "email": Option("--email"),
    }

    enabled = managed_property("enabled")
    description = managed_property("description")
    email = managed_property("email")

    def probe(self) -> RemoteInstance | None:
        self.probed_domain_id = self.cache.domain_id(self.resource.domain)
        return self.cache.find("user", self.resource.name, self.probed_domain_id)

    def create_args(self) -> list[str]:
        return (
            [self.resource.name]
            + build_options(self.options, self.resource.declared())
            + ["--domain", self.domain_name()]
        )

    @property
    def password(self) -> str | None:
        """The declared password if it is known to be current, else None.

        With ``replace_password`` off (or a disabled user, which cannot
        authenticate) the declared value is reported as-is and no call is
        made.
        """
        declared = self.resource.password
        if not self.resource.replace_password or self.resource.enabled is False:
            return declared
        if declared is None:
            return None
        if self.credentials is None:
            raise ConfigError("Password verification needs resolved credentials")

        probe = Credentials(
            scheme=Scheme.V3,
            auth_url=v3_auth_url(self.credentials.auth_url),
            user_id=self.id,
            password=declared,
        )
        try:
            self.executor.value("token", "issue", env=probe.env(use_token=False))
        except AuthError:
            logger.debug("Password for %s is out of date", self.resource.address)
            return None
        return declared

    @password.setter
    def password(self, value: str) -> None:
        self.queue("password", value)
