"""Probes — read-only queries against the machine, plus the installer.

These are the collaborator boundaries the engine consumes. Tests swap in
fakes for ``PackageProbe`` and ``Clock``; the filesystem probe is thin
enough to run against temporary directories.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from mimic.config.models import PackageKind
from mimic.errors import InstallError, ProbeError
from mimic.utils.paths import canonicalize

logger = logging.getLogger(__name__)

HOMEBREW_MISSING = "Homebrew not found. Please install Homebrew from https://brew.sh"


# ── Filesystem ───────────────────────────────────────────────────────


class FilesystemProbe:
    """Existence and symlink queries that never follow the final link."""

    def exists(self, path: Path) -> bool:
        """True for anything at ``path``, including a dangling symlink."""
        return os.path.lexists(path)

    def is_symlink(self, path: Path) -> bool:
        return path.is_symlink()

    def read_link(self, path: Path) -> Path:
        """Return the link target, made absolute relative to the link's directory."""
        try:
            link = Path(os.readlink(path))
        except OSError as e:
            raise ProbeError(f"Failed to read symlink {path}: {e}") from e
        if not link.is_absolute():
            link = path.parent / link
        return link

    def canonicalize(self, path: Path) -> Path | None:
        return canonicalize(path)


# ── Packages ─────────────────────────────────────────────────────────


class PackageProbe(Protocol):
    """Package-manager boundary: status query and install."""

    manager: str

    def is_installed(self, name: str, kind: PackageKind = PackageKind.FORMULA) -> bool:
        ...

    def install(self, name: str, kind: PackageKind = PackageKind.FORMULA) -> None:
        ...


class HomebrewManager:
    """Talks to ``brew``. Every query runs a fresh command; nothing is cached."""

    manager = "brew"

    def __init__(self, brew: str = "brew", timeout: int = 1800):
        self.brew = brew
        self.timeout = timeout

    def list_installed(self, kind: PackageKind = PackageKind.FORMULA) -> list[str]:
        flag = "--cask" if kind == PackageKind.CASK else "--formula"
        command = [self.brew, "list", flag, "-1"]
        try:
            proc = subprocess.run(command, capture_output=True, text=True, timeout=120)
        except FileNotFoundError as e:
            raise ProbeError(HOMEBREW_MISSING) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeError(f"Failed to execute brew: {e}") from e

        if proc.returncode != 0:
            raise ProbeError(f"brew list {flag} failed: {proc.stderr.strip()}")
        return [line.strip() for line in proc.stdout.splitlines() if line.strip()]

    def is_installed(self, name: str, kind: PackageKind = PackageKind.FORMULA) -> bool:
        return name in self.list_installed(kind)

    def install(self, name: str, kind: PackageKind = PackageKind.FORMULA) -> None:
        command = [self.brew, "install"]
        if kind == PackageKind.CASK:
            command.append("--cask")
        command.append(name)

        logger.debug("Running %s", " ".join(command))
        try:
            proc = subprocess.run(command, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise InstallError(HOMEBREW_MISSING, command=" ".join(command)) from e
        except subprocess.TimeoutExpired as e:
            raise InstallError(
                f"brew install {name} timed out after {self.timeout}s", command=" ".join(command)
            ) from e
        except OSError as e:
            raise InstallError(f"Failed to execute brew: {e}", command=" ".join(command)) from e

        if proc.returncode != 0:
            raise InstallError.command_failed(" ".join(command), proc.returncode, proc.stderr)


# ── Clock ────────────────────────────────────────────────────────────


class Clock(Protocol):
    def local_now(self) -> datetime:
        """Wall-clock time used to name backups."""
        ...

    def utc_now(self) -> datetime:
        """Timezone-aware UTC time used for ``applied_at``."""
        ...


class SystemClock:
    def local_now(self) -> datetime:
        return datetime.now()

    def utc_now(self) -> datetime:
        return datetime.now(timezone.utc)


# ── Host ─────────────────────────────────────────────────────────────


def detect_hostname() -> str:
    """Best-effort hostname of this machine."""
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"
