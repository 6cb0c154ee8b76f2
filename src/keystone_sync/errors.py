"""Error taxonomy for keystone-sync.

ConfigError and DuplicateResourceError are raised before any remote call.
AuthError aborts a run. NotFoundError and ExecutionError are raised by the
command executor and keep the raw client output for diagnosis.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Sequence


class ExitCode(IntEnum):
    OK = 0
    FAILURE = 1
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    EXECUTION_ERROR = 4


class KeystoneSyncError(Exception):
    """Base exception for keystone-sync errors."""


class ConfigError(KeystoneSyncError):
    """Bad or missing declared parameters."""


class DuplicateResourceError(ConfigError):
    """Two declared resources resolve to the same remote identity."""

    def __init__(self, identity: tuple, titles: Sequence[str]):
        super().__init__(
            f"Duplicate declaration of {identity[0]} {identity[1:]!r}: "
            + ", ".join(repr(t) for t in titles)
        )
        self.identity = identity
        self.titles = list(titles)


class CommandError(KeystoneSyncError):
    """Failure reported by the client process."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] | None = None,
        output: str = "",
    ):
        super().__init__(message)
        self.command = list(command or [])
        self.output = output


class AuthError(CommandError):
    """Credential or token failure."""


class NotFoundError(CommandError):
    """The remote object (or a required reference) does not exist."""


class ExecutionError(CommandError):
    """Any other client failure."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, ConfigError):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, AuthError):
        return int(ExitCode.AUTH_ERROR)
    if isinstance(exc, (ExecutionError, NotFoundError)):
        return int(ExitCode.EXECUTION_ERROR)
    return int(ExitCode.FAILURE)
