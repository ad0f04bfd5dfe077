"""Error taxonomy for the reconciliation engine.

Two families:
- Fatal errors (ConfigError, StateError) abort the invocation before any
  mutation and map to exit code 2.
- Resource errors (ProbeError, LinkError, InstallError) are isolated per
  resource by the apply transaction and reported in its summary.
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_DRIFT = 1  # Drift detected or one or more resource failures
EXIT_FATAL = 2


class MimicError(Exception):
    """Base class for all errors raised by mimic."""

    fatal = False


class ConfigError(MimicError):
    """Config source missing, malformed, or semantically invalid."""

    fatal = True


class StateError(MimicError):
    """Persisted state record unreadable, corrupt, or not writable."""

    fatal = True


class ProbeError(MimicError):
    """A filesystem or package-manager query failed."""


class LinkError(MimicError):
    """Creating, replacing, or backing up a symlink target failed."""


class InstallError(MimicError):
    """The package manager could not install a package."""

    def __init__(self, message: str, command: str = "", exit_code: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr

    @classmethod
    def command_failed(cls, command: str, exit_code: int, stderr: str) -> InstallError:
        return cls(
            f"Command '{command}' failed with exit code {exit_code}: {stderr.strip()}",
            command=command,
            exit_code=exit_code,
            stderr=stderr,
        )
