"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Phrasings the openstack client uses for a missing object. Matching is
# case-insensitive; anything unmatched is treated as a hard failure.
DEFAULT_NOT_FOUND_PATTERNS = [
    r"No \w+ with a name or ID of",
    r"No \w+ found for",
    r"Could not find \w+",
    r"\(HTTP 404\)",
]

DEFAULT_UNAUTHORIZED_PATTERNS = [
    r"HTTP 401",
    r"The request you have made requires authentication",
]


class Settings(BaseSettings):
    """Tool settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KEYSTONE_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # Client
    client: str = "openstack"
    command_timeout: float | None = None  # seconds, None waits forever

    # Identity defaults
    default_domain: str = "Default"
    services_project: str = "services"
    default_region: str = "RegionOne"

    # Auth
    rc_file: Path = Field(default=Path("/root/openrc"))
    token_retries: int = 0
    reuse_token: bool = True

    # Error classification
    not_found_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NOT_FOUND_PATTERNS)
    )
    unauthorized_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_UNAUTHORIZED_PATTERNS)
    )


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Alias for the module-level settings singleton."""
    return settings
