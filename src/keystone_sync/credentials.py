"""Credential resolution for the openstack client.

Settings can be provided via:
1. Explicit parameters (CLI options, constructor overrides)
2. Environment variables (OS_*)
3. An openrc file (``export OS_*=...`` lines), only for fields still unset
"""

from __future__ import annotations

import logging
import shlex
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings import BaseSettings, SettingsConfigDict

from keystone_sync.config import get_settings
from keystone_sync.errors import AuthError, ConfigError, ExecutionError

if TYPE_CHECKING:
    from keystone_sync.executor import CommandExecutor

logger = logging.getLogger(__name__)


class Scheme(str, Enum):
    """Authentication addressing style."""

    V2 = "v2"  # tenant-scoped
    V3 = "v3"  # domain/project/system-scoped


def read_openrc(path: Path) -> dict[str, str]:
    """Read ``OS_*`` assignments from an openrc file.

    Returns a mapping of lower-cased names without the ``OS_`` prefix, or an
    empty mapping if the file does not exist.
    """
    if not path.exists():
        return {}

    values: dict[str, str] = {}
    for line in path.read_text().splitlines():
        try:
            tokens = shlex.split(line, comments=True)
        except ValueError:
            logger.debug("Skipping unparsable line in %s", path)
            continue
        if tokens and tokens[0] == "export":
            tokens = tokens[1:]
        for token in tokens:
            key, sep, value = token.partition("=")
            if sep and key.startswith("OS_"):
                values[key[3:].lower()] = value
    return values


class CredentialSettings(BaseSettings):
    """Raw credential inputs, before scheme selection and validation."""

    model_config = SettingsConfigDict(
        env_prefix="OS_",
        extra="ignore",
        case_sensitive=False,
    )

    auth_url: str | None = None
    identity_api_version: str | None = None

    username: str | None = None
    user_id: str | None = None
    password: str | None = None
    token: str | None = None

    user_domain_name: str | None = None
    user_domain_id: str | None = None
    project_name: str | None = None
    project_id: str | None = None
    project_domain_name: str | None = None
    project_domain_id: str | None = None
    domain_name: str | None = None
    domain_id: str | None = None
    system_scope: str | None = None

    region_name: str | None = None
    interface: str | None = None

    def with_overrides(self, **overrides: str | None) -> "CredentialSettings":
        """Create a new settings instance with explicit overrides applied."""
        values = self.model_dump()
        for key, value in overrides.items():
            if key not in values:
                raise ConfigError(f"Unknown credential parameter: {key}")
            if value is not None:
                values[key] = value
        return CredentialSettings(**values)

    def with_rc_file(self, path: Path | None = None) -> "CredentialSettings":
        """Fill still-unset fields from an openrc file."""
        rc_path = path or get_settings().rc_file
        rc_values = read_openrc(rc_path)
        if not rc_values:
            return self

        values = self.model_dump()
        filled = [
            key for key, value in rc_values.items()
            if key in values and values[key] is None
        ]
        if not filled:
            return self

        for key in filled:
            values[key] = rc_values[key]
        logger.info("Loaded %d credential fields from %s", len(filled), rc_path)
        return CredentialSettings(**values)


@dataclass
class TokenRef:
    """An issued (or pre-issued) token."""

    id: str
    expires_at: float | None = None
    project_id: str | None = None
    user_id: str | None = None

    def is_valid(self, leeway: int = 30) -> bool:
        """Check if token is still valid."""
        if self.expires_at is None:
            return True
        return time.time() < (self.expires_at - leeway)


def _parse_expiry(raw: str) -> float | None:
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def parse_token(lines: list[str]) -> TokenRef:
    """Parse ``token issue --format value`` output.

    Lines are expires, id, then project id and user id when present.
    """
    if len(lines) < 2:
        raise ExecutionError(f"Unexpected token output: {lines!r}")

    return TokenRef(
        id=lines[1],
        expires_at=_parse_expiry(lines[0]),
        project_id=lines[2] if len(lines) > 3 else None,
        user_id=lines[-1] if len(lines) > 2 else None,
    )


@dataclass
class Credentials:
    """Resolved authentication context for one run."""

    scheme: Scheme
    auth_url: str
    username: str | None = None
    user_id: str | None = None
    password: str | None = None
    token_value: str | None = None

    user_domain_name: str | None = None
    user_domain_id: str | None = None
    project_name: str | None = None
    project_id: str | None = None
    project_domain_name: str | None = None
    project_domain_id: str | None = None
    domain_name: str | None = None
    domain_id: str | None = None
    system_scope: str | None = None

    region_name: str | None = None
    interface: str | None = None

    _token: TokenRef | None = field(default=None, init=False, repr=False, compare=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @classmethod
    def from_settings(cls, raw: CredentialSettings) -> "Credentials":
        """Validate raw inputs and select the auth scheme."""
        if not raw.auth_url:
            raise ConfigError("No auth URL configured (OS_AUTH_URL)")

        if not raw.password and not raw.token:
            raise ConfigError(
                "Neither a password (OS_PASSWORD) nor a token (OS_TOKEN) is configured"
            )

        if raw.password and not raw.token and not (raw.username or raw.user_id):
            raise ConfigError("Password auth needs OS_USERNAME or OS_USER_ID")

        scopes = [
            name
            for name, present in (
                ("system", raw.system_scope),
                ("domain", raw.domain_name or raw.domain_id),
                ("project", raw.project_name or raw.project_id),
            )
            if present
        ]
        if len(scopes) > 1:
            raise ConfigError(f"Ambiguous scope: {' and '.join(scopes)} are both set")

        domain_style = any(
            (
                raw.user_domain_name,
                raw.user_domain_id,
                raw.project_domain_name,
                raw.project_domain_id,
                raw.domain_name,
                raw.domain_id,
                raw.system_scope,
            )
        )

        version = (raw.identity_api_version or "").strip()
        if version.startswith("2"):
            if domain_style:
                raise ConfigError(
                    "Domain and system scopes need identity API v3 "
                    f"(OS_IDENTITY_API_VERSION={version})"
                )
            scheme = Scheme.V2
        elif version.startswith("3"):
            scheme = Scheme.V3
        elif version:
            raise ConfigError(f"Unsupported identity API version: {version}")
        else:
            scheme = Scheme.V3 if domain_style else Scheme.V2

        return cls(
            scheme=scheme,
            auth_url=raw.auth_url,
            username=raw.username,
            user_id=raw.user_id,
            password=raw.password,
            token_value=raw.token,
            user_domain_name=raw.user_domain_name,
            user_domain_id=raw.user_domain_id,
            project_name=raw.project_name,
            project_id=raw.project_id,
            project_domain_name=raw.project_domain_name,
            project_domain_id=raw.project_domain_id,
            domain_name=raw.domain_name,
            domain_id=raw.domain_id,
            system_scope=raw.system_scope,
            region_name=raw.region_name,
            interface=raw.interface,
        )

    @property
    def cached_token(self) -> TokenRef | None:
        return self._token

    def env(self, use_token: bool = True) -> dict[str, str]:
        """Render the OS_* environment for the client process.

        With ``use_token`` the cached (or pre-issued) token replaces the
        password.
        """
        token = None
        if use_token:
            token = self._token.id if self._token else self.token_value
        elif not self.password:
            token = self.token_value

        pairs: list[tuple[str, str | None]] = [
            ("OS_AUTH_URL", self.auth_url),
            ("OS_IDENTITY_API_VERSION", "3" if self.scheme is Scheme.V3 else "2.0"),
        ]

        if token:
            pairs += [
                ("OS_AUTH_TYPE", "v3token" if self.scheme is Scheme.V3 else "v2token"),
                ("OS_TOKEN", token),
            ]
        else:
            pairs += [
                ("OS_USERNAME", self.username),
                ("OS_USER_ID", self.user_id),
                ("OS_PASSWORD", self.password),
            ]
            if self.scheme is Scheme.V3:
                pairs += [
                    ("OS_USER_DOMAIN_NAME", self.user_domain_name),
                    ("OS_USER_DOMAIN_ID", self.user_domain_id),
                ]

        if self.scheme is Scheme.V3:
            pairs += [
                ("OS_PROJECT_NAME", self.project_name),
                ("OS_PROJECT_ID", self.project_id),
                ("OS_PROJECT_DOMAIN_NAME", self.project_domain_name),
                ("OS_PROJECT_DOMAIN_ID", self.project_domain_id),
                ("OS_DOMAIN_NAME", self.domain_name),
                ("OS_DOMAIN_ID", self.domain_id),
                ("OS_SYSTEM_SCOPE", self.system_scope),
            ]
        else:
            pairs += [
                ("OS_TENANT_NAME", self.project_name),
                ("OS_TENANT_ID", self.project_id),
            ]

        pairs += [
            ("OS_REGION_NAME", self.region_name),
            ("OS_INTERFACE", self.interface),
        ]

        return {key: value for key, value in pairs if value}

    def token(self, executor: "CommandExecutor", retries: int | None = None) -> TokenRef:
        """Return the run's token, issuing it on first use.

        Authentication failures raise AuthError immediately. Other client
        failures are retried ``retries`` times (default from settings, 0).
        """
        attempts = 1 + (get_settings().token_retries if retries is None else retries)

        with self._lock:
            if self._token is not None and self._token.is_valid():
                return self._token

            if self.token_value:
                self._token = TokenRef(id=self.token_value)
                return self._token

            last_error: ExecutionError | None = None
            for attempt in range(1, attempts + 1):
                try:
                    lines = executor.value(
                        "token", "issue", env=self.env(use_token=False)
                    )
                except AuthError:
                    raise
                except ExecutionError as e:
                    last_error = e
                    logger.warning(
                        "Token request failed (attempt %d/%d): %s", attempt, attempts, e
                    )
                    continue

                self._token = parse_token(lines)
                logger.info(
                    "Authenticated against %s (%s)", self.auth_url, self.scheme.value
                )
                return self._token

            raise last_error

    def reset(self) -> None:
        """Forget the cached token."""
        with self._lock:
            self._token = None


def resolve_credentials(
    overrides: dict[str, str | None] | None = None,
    rc_file: Path | None = None,
) -> Credentials:
    """Build credentials from explicit overrides, the environment and an rc file."""
    raw = CredentialSettings().with_overrides(**(overrides or {})).with_rc_file(rc_file)
    return Credentials.from_settings(raw)
