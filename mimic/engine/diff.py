"""Diff engine — compare desired state against what the machine reports.

The output has one entry per active resource, in declaration order
(dotfiles first, then packages), including resources that are already
correct. Nothing is mutated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from mimic.config.models import ActiveDotfile, ActivePackage, ResolvedConfig, ResourceType
from mimic.errors import ProbeError
from mimic.probes import FilesystemProbe, PackageProbe
from mimic.templates import TemplateRenderer

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    ADD = "add"
    MODIFY = "modify"
    ALREADY_CORRECT = "already_correct"
    PROBE_FAILED = "probe_failed"  # The resource could not be inspected


class DotfileStatus(Enum):
    MISSING = "missing"
    WRONG_TARGET = "wrong_target"
    ALREADY_CORRECT = "already_correct"
    NOT_A_SYMLINK = "not_a_symlink"


@dataclass(frozen=True)
class DotfileProbeResult:
    status: DotfileStatus
    current_target: Path | None = None  # Set for WRONG_TARGET


@dataclass(frozen=True)
class Change:
    """One resource's relation to desired state."""

    kind: ChangeKind
    resource: ActiveDotfile | ActivePackage
    reason: str = ""

    @property
    def resource_type(self) -> ResourceType:
        return self.resource.resource_type

    @property
    def needs_apply(self) -> bool:
        return self.kind in (ChangeKind.ADD, ChangeKind.MODIFY)

    @property
    def description(self) -> str:
        if self.resource_type == ResourceType.DOTFILE:
            if self.kind == ChangeKind.ADD:
                return f"{self.resource.target} → {self.resource.source}"
            return str(self.resource.target)
        return f"{self.resource.manager} package: {self.resource.name}"


class DiffEngine:
    """Computes the change list for a resolved config."""

    def __init__(
        self,
        packages: PackageProbe,
        fs: FilesystemProbe | None = None,
        renderer: TemplateRenderer | None = None,
    ):
        self.packages = packages
        self.fs = fs or FilesystemProbe()
        self.renderer = renderer or TemplateRenderer()

    def diff(self, resolved: ResolvedConfig) -> list[Change]:
        changes = [self.diff_dotfile(d) for d in resolved.dotfiles]
        changes.extend(self.diff_package(p) for p in resolved.packages)
        return changes

    def link_source(self, dotfile: ActiveDotfile) -> Path:
        """The path a correct symlink for ``dotfile`` points at."""
        if dotfile.template:
            return self.renderer.rendered_path(dotfile.source)
        return dotfile.source

    def probe_dotfile(self, dotfile: ActiveDotfile) -> DotfileProbeResult:
        target = dotfile.target
        if not self.fs.exists(target):
            return DotfileProbeResult(DotfileStatus.MISSING)
        if not self.fs.is_symlink(target):
            return DotfileProbeResult(DotfileStatus.NOT_A_SYMLINK)

        current = self.fs.read_link(target)
        expected = self.fs.canonicalize(self.link_source(dotfile))
        actual = self.fs.canonicalize(current)
        if expected is not None and actual == expected:
            return DotfileProbeResult(DotfileStatus.ALREADY_CORRECT)
        return DotfileProbeResult(DotfileStatus.WRONG_TARGET, current_target=current)

    def diff_dotfile(self, dotfile: ActiveDotfile) -> Change:
        if self.fs.canonicalize(dotfile.source) is None:
            return Change(ChangeKind.MODIFY, dotfile, f"source does not exist: {dotfile.source}")

        try:
            result = self.probe_dotfile(dotfile)
        except ProbeError as e:
            logger.warning("Could not inspect %s: %s", dotfile.target, e)
            return Change(ChangeKind.PROBE_FAILED, dotfile, str(e))

        if result.status == DotfileStatus.MISSING:
            return Change(ChangeKind.ADD, dotfile)
        if result.status == DotfileStatus.ALREADY_CORRECT:
            return Change(ChangeKind.ALREADY_CORRECT, dotfile)
        if result.status == DotfileStatus.NOT_A_SYMLINK:
            return Change(ChangeKind.MODIFY, dotfile, "not a symlink")
        if result.status == DotfileStatus.WRONG_TARGET:
            return Change(ChangeKind.MODIFY, dotfile, f"wrong target: {result.current_target}")
        raise AssertionError(f"unhandled dotfile status: {result.status}")

    def diff_package(self, package: ActivePackage) -> Change:
        try:
            installed = self.packages.is_installed(package.name, package.kind)
        except ProbeError as e:
            logger.warning("Could not query %s: %s", package.identity, e)
            return Change(ChangeKind.PROBE_FAILED, package, str(e))

        if installed:
            return Change(ChangeKind.ALREADY_CORRECT, package)
        return Change(ChangeKind.ADD, package)
