"""YAML manifest of declared resources.

Example::

    resources:
      - kind: domain
        title: users
      - kind: user
        title: alice::users
        password: ${ALICE_PASSWORD}
        email: alice@example.com
      - kind: user_role
        title: alice::users@demo::users
        roles: [member]

    service_identities:
      - title: glance
        password: ${GLANCE_PASSWORD:-changeme}
        service_type: image
        public_url: http://7.7.7.7:9292
        internal_url: http://10.0.0.1:9292
        admin_url: http://192.168.0.1:9292

Strings may reference environment variables as ``${VAR}`` or
``${VAR:-default}``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from keystone_sync.errors import ConfigError

_PLACEHOLDER = re.compile(r"\$\{(?P<name>[A-Za-z_]\w*)(?::-(?P<default>[^}]*))?\}")

# A default may itself hold a placeholder, which needs another pass.
_MAX_PASSES = 5


def _lookup(match: re.Match[str]) -> str:
    return os.environ.get(match["name"]) or (match["default"] or "")


class Manifest(BaseModel):
    """Raw declarations, validated per entry when the catalog is built."""

    model_config = ConfigDict(extra="forbid")

    resources: list[dict[str, Any]] = Field(default_factory=list)
    service_identities: list[dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _interpolate(cls, data: Any) -> Any:
        return cls._expand(data)

    @classmethod
    def _expand(cls, data: Any) -> Any:
        """Substitute ``${VAR}`` placeholders in every string of the document."""
        if isinstance(data, dict):
            return {key: cls._expand(value) for key, value in data.items()}
        if isinstance(data, list):
            return [cls._expand(value) for value in data]
        if not isinstance(data, str):
            return data

        for _ in range(_MAX_PASSES):
            expanded = _PLACEHOLDER.sub(_lookup, data)
            if expanded == data:
                break
            data = expanded
        return data

    @field_validator("resources")
    @classmethod
    def _entries_have_kind_and_title(cls, v: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for i, entry in enumerate(v):
            missing = [key for key in ("kind", "title") if not entry.get(key)]
            if missing:
                raise ValueError(f"resources[{i}] is missing {', '.join(missing)}")
        return v

    @field_validator("service_identities")
    @classmethod
    def _identities_have_title(cls, v: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for i, entry in enumerate(v):
            if not entry.get("title"):
                raise ValueError(f"service_identities[{i}] is missing title")
        return v

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Manifest":
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigError(f"Invalid manifest: {e}") from e

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Manifest":
        """Load a manifest from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Manifest not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Manifest {path} must be a mapping")
        return cls.from_dict(data)
