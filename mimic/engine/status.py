"""Drift detection — compare the persisted record against the machine.

Drift here means the last applied state no longer holds: a tracked symlink
was removed, replaced, or repointed, or a tracked package disappeared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from mimic.config.models import PackageKind
from mimic.errors import EXIT_DRIFT, EXIT_OK, ProbeError
from mimic.probes import FilesystemProbe, PackageProbe
from mimic.state.store import StateRecord


class DriftType:
    MISSING = "missing"
    NOT_A_SYMLINK = "not a symlink"
    BROKEN_LINK = "broken link"
    SOURCE_MISSING = "source missing"
    WRONG_TARGET = "wrong target"
    NOT_INSTALLED = "not installed"
    PROBE_FAILED = "probe failed"


@dataclass
class DriftEntry:
    """Status of one tracked resource."""

    resource: str
    kind: str  # dotfile | package
    drift_type: str | None = None
    detail: str = ""

    @property
    def in_sync(self) -> bool:
        return self.drift_type is None


@dataclass
class StatusReport:
    entries: list[DriftEntry] = field(default_factory=list)

    def _of_kind(self, kind: str) -> list[DriftEntry]:
        return [e for e in self.entries if e.kind == kind]

    @property
    def dotfiles(self) -> list[DriftEntry]:
        return self._of_kind("dotfile")

    @property
    def packages(self) -> list[DriftEntry]:
        return self._of_kind("package")

    @property
    def drifted(self) -> list[DriftEntry]:
        return [e for e in self.entries if not e.in_sync]

    @property
    def has_drift(self) -> bool:
        return bool(self.drifted)

    @property
    def exit_code(self) -> int:
        return EXIT_DRIFT if self.has_drift else EXIT_OK


class StatusChecker:
    def __init__(self, packages: PackageProbe | None, fs: FilesystemProbe | None = None):
        self.packages = packages
        self.fs = fs or FilesystemProbe()

    def check(self, state: StateRecord) -> StatusReport:
        report = StatusReport()
        for entry in state.dotfiles:
            expected = Path(entry.rendered_path or entry.source)
            report.entries.append(self.check_dotfile(Path(entry.target), expected))
        for package in state.packages:
            report.entries.append(self.check_package(package.name, package.manager))
        return report

    def check_dotfile(self, target: Path, expected: Path) -> DriftEntry:
        entry = DriftEntry(resource=str(target), kind="dotfile")
        if not self.fs.exists(target):
            entry.drift_type = DriftType.MISSING
            return entry
        if not self.fs.is_symlink(target):
            entry.drift_type = DriftType.NOT_A_SYMLINK
            return entry

        try:
            current = self.fs.read_link(target)
        except ProbeError as e:
            entry.drift_type = DriftType.PROBE_FAILED
            entry.detail = str(e)
            return entry

        actual = self.fs.canonicalize(current)
        if actual is None:
            entry.drift_type = DriftType.BROKEN_LINK
            entry.detail = str(current)
            return entry
        wanted = self.fs.canonicalize(expected)
        if wanted is None:
            entry.drift_type = DriftType.SOURCE_MISSING
            entry.detail = str(expected)
            return entry
        if actual != wanted:
            entry.drift_type = DriftType.WRONG_TARGET
            entry.detail = f"points to {current} instead of {expected}"
        return entry

    def check_package(self, name: str, manager: str) -> DriftEntry:
        entry = DriftEntry(resource=f"{manager} package: {name}", kind="package")
        if self.packages is None or manager != self.packages.manager:
            entry.drift_type = DriftType.PROBE_FAILED
            entry.detail = f"no probe for package manager '{manager}'"
            return entry
        try:
            # The record does not keep the kind; a cask counts as installed too
            installed = self.packages.is_installed(name, PackageKind.FORMULA) or self.packages.is_installed(
                name, PackageKind.CASK
            )
        except ProbeError as e:
            entry.drift_type = DriftType.PROBE_FAILED
            entry.detail = str(e)
            return entry
        if not installed:
            entry.drift_type = DriftType.NOT_INSTALLED
        return entry
