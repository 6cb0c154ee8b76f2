"""Pytest configuration and fixtures.

``FakeRunner`` stands in for ``subprocess.run``: tests script the exact
argv (without the client binary) and the output it produces.
"""

from __future__ import annotations

import os
import subprocess

import pytest

from keystone_sync.cache import InstanceCache
from keystone_sync.config import DEFAULT_NOT_FOUND_PATTERNS, DEFAULT_UNAUTHORIZED_PATTERNS
from keystone_sync.credentials import Credentials, Scheme
from keystone_sync.executor import CommandExecutor


def shell_output(**values: object) -> str:
    """Render ``--format shell`` output."""
    return "".join(f'{key}="{value}"\n' for key, value in values.items())


def csv_output(header: list[str], *rows: list[object]) -> str:
    """Render ``--format csv`` output with every field quoted."""
    lines = [",".join(f'"{h}"' for h in header)]
    for row in rows:
        lines.append(",".join(f'"{v}"' for v in row))
    return "\n".join(lines) + "\n"


DOMAIN_HEADER = ["ID", "Name", "Enabled", "Description"]

DOMAINS = csv_output(
    DOMAIN_HEADER,
    ["default", "Default", "True", "The default domain"],
    ["domain1_id", "domain1", "True", ""],
    ["domain2_id", "domain2", "False", "disabled domain"],
)


class FakeRunner:
    """Scripted replacement for subprocess.run."""

    def __init__(self) -> None:
        self.responses: list[tuple[list[str], str, str, int]] = []
        self.calls: list[list[str]] = []
        self.envs: list[dict[str, str]] = []

    def add(
        self,
        *argv: str,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> "FakeRunner":
        self.responses.append((list(argv), stdout, stderr, returncode))
        return self

    def __call__(self, argv, **kwargs):
        args = list(argv[1:])
        self.calls.append(args)
        self.envs.append(kwargs.get("env") or {})
        for expected, stdout, stderr, returncode in self.responses:
            if expected == args:
                return subprocess.CompletedProcess(argv, returncode, stdout, stderr)
        raise AssertionError(f"Unexpected command: {' '.join(args)}")

    def count(self, *prefix: str) -> int:
        """Number of calls starting with the given arguments."""
        return sum(1 for call in self.calls if call[: len(prefix)] == list(prefix))


@pytest.fixture(autouse=True)
def clean_os_env(monkeypatch):
    """Keep the caller's OS_* variables out of every test."""
    for key in list(os.environ):
        if key.startswith("OS_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        scheme=Scheme.V3,
        auth_url="http://keystone:5000/v3",
        username="admin",
        password="secret",
        user_domain_name="Default",
        project_name="admin",
        project_domain_name="Default",
    )


@pytest.fixture
def executor(runner, credentials) -> CommandExecutor:
    return CommandExecutor(
        credentials,
        client="openstack",
        not_found_patterns=DEFAULT_NOT_FOUND_PATTERNS,
        unauthorized_patterns=DEFAULT_UNAUTHORIZED_PATTERNS,
        timeout=None,
        reuse_token=True,
        runner=runner,
    )


@pytest.fixture
def cache(executor) -> InstanceCache:
    return InstanceCache(executor, default_domain="Default")
