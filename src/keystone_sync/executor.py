"""Command executor for the openstack client.

Builds a deterministic argv, runs the client in a clean environment, parses
its output and classifies failures:

- output matching an unauthorized pattern -> AuthError
- output matching a not-found pattern     -> NotFoundError
- anything else                           -> ExecutionError

The raw client output is kept verbatim on every error.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import re
import subprocess
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence

from keystone_sync.config import get_settings
from keystone_sync.errors import AuthError, CommandError, ExecutionError, NotFoundError

if TYPE_CHECKING:
    from keystone_sync.credentials import Credentials

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

# Arguments whose following value must never be logged.
SECRET_FLAGS = {"--password", "--os-password", "--os-token"}

_SHELL_LINE = re.compile(r'^(?P<key>[A-Za-z_][A-Za-z0-9_]*)="(?P<value>.*)"$')


# -----------------------------------------------------------------------------
# Output parsers
# -----------------------------------------------------------------------------


def parse_shell(output: str) -> dict[str, str]:
    """Parse ``--format shell`` output (``key="value"`` lines)."""
    result: dict[str, str] = {}
    for line in output.splitlines():
        match = _SHELL_LINE.match(line.strip())
        if match:
            result[match.group("key")] = match.group("value").replace('\\"', '"')
    return result


def _column_name(header: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", header.strip().lower()).strip("_")


def parse_csv(output: str) -> list[dict[str, str]]:
    """Parse ``--format csv`` output into one mapping per row."""
    rows = list(csv.reader(io.StringIO(output.strip())))
    if not rows:
        return []

    header = [_column_name(h) for h in rows[0]]
    return [dict(zip(header, row)) for row in rows[1:] if row]


def parse_value(output: str) -> list[str]:
    """Parse ``--format value`` output into its non-empty lines."""
    return [line.strip() for line in output.splitlines() if line.strip()]


def redact(argv: Sequence[str]) -> list[str]:
    """Mask the values of secret-bearing flags."""
    masked: list[str] = []
    hide_next = False
    for arg in argv:
        masked.append("********" if hide_next else arg)
        hide_next = arg in SECRET_FLAGS
    return masked


# -----------------------------------------------------------------------------
# Executor
# -----------------------------------------------------------------------------


class CommandExecutor:
    """Synchronous wrapper around the openstack command-line client."""

    def __init__(
        self,
        credentials: "Credentials | None" = None,
        *,
        client: str | None = None,
        not_found_patterns: Sequence[str] | None = None,
        unauthorized_patterns: Sequence[str] | None = None,
        timeout: float | None = None,
        reuse_token: bool | None = None,
        runner: Runner | None = None,
    ):
        cfg = get_settings()
        self.credentials = credentials
        self._client = client or cfg.client
        self._not_found = [
            re.compile(p, re.IGNORECASE)
            for p in (cfg.not_found_patterns if not_found_patterns is None else not_found_patterns)
        ]
        self._unauthorized = [
            re.compile(p, re.IGNORECASE)
            for p in (
                cfg.unauthorized_patterns
                if unauthorized_patterns is None
                else unauthorized_patterns
            )
        ]
        self._timeout = cfg.command_timeout if timeout is None else timeout
        self._reuse_token = cfg.reuse_token if reuse_token is None else reuse_token
        self._runner = runner
        self.calls = 0

    @property
    def client(self) -> str:
        return self._client

    def command(
        self,
        noun: str,
        verb: str,
        fmt: str | None = None,
        args: Sequence[Any] = (),
    ) -> list[str]:
        """Build the argv for one client call.

        ``openstack <noun> <verb> [--quiet] [--format <fmt>] <args...>``
        """
        argv = [self._client, *noun.split(), verb]
        if fmt == "csv":
            argv.append("--quiet")
        if fmt:
            argv += ["--format", fmt]
        argv += [str(a) for a in args]
        return argv

    def _environment(self, env: Mapping[str, str] | None) -> dict[str, str]:
        process_env = {k: v for k, v in os.environ.items() if not k.startswith("OS_")}
        if env is not None:
            process_env.update(env)
        elif self.credentials is not None:
            process_env.update(self.credentials.env(use_token=self._reuse_token))
        return process_env

    def classify(self, argv: Sequence[str], output: str, returncode: int) -> CommandError:
        """Map a failed call onto the error taxonomy."""
        message = output.strip() or f"{argv[1]} {argv[2]} failed with exit status {returncode}"
        command = redact(argv)

        if any(p.search(output) for p in self._unauthorized):
            return AuthError(message, command=command, output=output)
        if any(p.search(output) for p in self._not_found):
            return NotFoundError(message, command=command, output=output)
        return ExecutionError(message, command=command, output=output)

    def run(
        self,
        noun: str,
        verb: str,
        fmt: str | None = None,
        args: Sequence[Any] = (),
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Run one client call and return its stdout."""
        argv = self.command(noun, verb, fmt, args)
        runner = self._runner or subprocess.run

        logger.debug("Running: %s", " ".join(redact(argv)))
        self.calls += 1
        try:
            proc = runner(
                argv,
                capture_output=True,
                text=True,
                env=self._environment(env),
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                f"Client not found in PATH: {self._client}", command=redact(argv)
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(
                f"Command timed out after {self._timeout}s", command=redact(argv)
            ) from e

        if proc.returncode != 0:
            raise self.classify(argv, proc.stderr or proc.stdout or "", proc.returncode)

        return proc.stdout or ""

    # -------------------------------------------------------------------------
    # Parsed helpers
    # -------------------------------------------------------------------------

    def show(
        self,
        noun: str,
        verb: str = "show",
        args: Sequence[Any] = (),
        env: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Run a single-object call in shell format."""
        return parse_shell(self.run(noun, verb, "shell", args, env))

    def listing(
        self,
        noun: str,
        verb: str = "list",
        args: Sequence[Any] = (),
    ) -> list[dict[str, str]]:
        """Run a listing call in CSV format."""
        return parse_csv(self.run(noun, verb, "csv", args))

    def value(
        self,
        noun: str,
        verb: str,
        args: Sequence[Any] = (),
        env: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Run a call in value format."""
        return parse_value(self.run(noun, verb, "value", args, env))
