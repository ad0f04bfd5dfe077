"""Apply transaction — execute a change list against the machine.

Resources are processed strictly in order. A failure on one resource is
captured as a failed outcome and the run continues. The state record is
loaded once at the start, mutated in memory, and saved once at the end;
individual resources are not mutually transactional, so a crash mid-run
leaves completed links on disk that the persisted record does not list.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from mimic.config.models import ActiveDotfile, ActivePackage, ResolvedConfig, ResourceType
from mimic.engine.conflict import ConflictAction, ResolutionSession
from mimic.engine.diff import Change, ChangeKind
from mimic.errors import EXIT_DRIFT, EXIT_OK, InstallError, LinkError, ProbeError
from mimic.hooks import HookResult, HookRunner
from mimic.probes import Clock, FilesystemProbe, PackageProbe, SystemClock
from mimic.state.store import DotfileState, PackageState, StateRecord, StateStore
from mimic.templates import TemplateRenderer

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


class OutcomeStatus(Enum):
    APPLIED = "applied"  # Linked or installed by this run
    ADOPTED = "adopted"  # Package found installed, recorded without reinstalling
    UNCHANGED = "unchanged"  # Already correct, nothing done
    SKIPPED = "skipped"  # Conflict resolved as Skip
    FAILED = "failed"


@dataclass
class ResourceOutcome:
    """What happened to one change during apply."""

    change: Change
    status: OutcomeStatus
    detail: str = ""
    backup_path: Path | None = None

    @property
    def description(self) -> str:
        return self.change.description


@dataclass
class ApplyResult:
    """Aggregated result of one apply run."""

    outcomes: list[ResourceOutcome] = field(default_factory=list)
    hook_results: list[HookResult] = field(default_factory=list)
    state: StateRecord | None = None

    def _count(self, *statuses: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status in statuses)

    @property
    def succeeded(self) -> int:
        return self._count(OutcomeStatus.APPLIED, OutcomeStatus.ADOPTED)

    @property
    def unchanged(self) -> int:
        return self._count(OutcomeStatus.UNCHANGED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return len(self.failures) + len(self.failed_hooks)

    @property
    def failures(self) -> list[ResourceOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def failed_hooks(self) -> list[HookResult]:
        """Hooks that failed and were declared with ``on_failure = "fail"``."""
        return [h for h in self.hook_results if not h.passed and h.fail_on_error]

    @property
    def exit_code(self) -> int:
        return EXIT_DRIFT if self.failed else EXIT_OK

    def summary(self) -> str:
        return (
            f"{self.succeeded} applied, {self.unchanged} unchanged, "
            f"{self.skipped} skipped, {self.failed} failed"
        )


class ApplyTransaction:
    """Runs one apply over a precomputed change list."""

    def __init__(
        self,
        store: StateStore,
        packages: PackageProbe,
        session: ResolutionSession | None = None,
        fs: FilesystemProbe | None = None,
        clock: Clock | None = None,
        renderer: TemplateRenderer | None = None,
        hook_runner: HookRunner | None = None,
    ):
        self.store = store
        self.packages = packages
        self.session = session or ResolutionSession.non_interactive()
        self.fs = fs or FilesystemProbe()
        self.clock = clock or SystemClock()
        self.renderer = renderer or TemplateRenderer()
        self.hook_runner = hook_runner

    def run(
        self,
        changes: list[Change],
        resolved: ResolvedConfig,
        applied_commit: str | None = None,
    ) -> ApplyResult:
        """Apply ``changes`` and persist the resulting state once.

        Raises:
            StateError: The previous record is unreadable, or the new one
                cannot be saved. Nothing is mutated in the first case.
        """
        state = self.store.load()
        result = ApplyResult(state=state)

        for change in changes:
            outcome = self._apply_change(change, state, resolved)
            logger.debug("%s: %s %s", outcome.description, outcome.status.value, outcome.detail)
            result.outcomes.append(outcome)

        if self.hook_runner is not None and resolved.hooks:
            result.hook_results = self.hook_runner.run(resolved.hooks)

        state.active_host = resolved.host.name
        if applied_commit is not None:
            state.applied_commit = applied_commit
        state.touch(self.clock.utc_now())
        self.store.save(state)
        return result

    # ── Dispatch ──────────────────────────────────────────────────────

    def _apply_change(self, change: Change, state: StateRecord, resolved: ResolvedConfig) -> ResourceOutcome:
        if change.kind == ChangeKind.ALREADY_CORRECT:
            # Installed packages are adopted; correct symlinks made outside mimic are not
            if change.resource_type == ResourceType.PACKAGE:
                package = change.resource
                if state.record_package(PackageState(name=package.name, manager=package.manager)):
                    return ResourceOutcome(change, OutcomeStatus.ADOPTED, "already installed")
            return ResourceOutcome(change, OutcomeStatus.UNCHANGED)
        if change.kind == ChangeKind.PROBE_FAILED:
            return ResourceOutcome(change, OutcomeStatus.FAILED, change.reason)

        try:
            if change.resource_type == ResourceType.DOTFILE:
                return self._apply_dotfile(change, change.resource, state, resolved)
            if change.resource_type == ResourceType.PACKAGE:
                return self._apply_package(change, change.resource, state)
            raise AssertionError(f"unhandled resource type: {change.resource_type}")
        except (LinkError, InstallError, ProbeError) as e:
            logger.warning("%s failed: %s", change.description, e)
            return ResourceOutcome(change, OutcomeStatus.FAILED, str(e))

    # ── Dotfiles ──────────────────────────────────────────────────────

    def _apply_dotfile(
        self,
        change: Change,
        dotfile: ActiveDotfile,
        state: StateRecord,
        resolved: ResolvedConfig,
    ) -> ResourceOutcome:
        if self.fs.canonicalize(dotfile.source) is None:
            raise LinkError(f"Source file does not exist: {dotfile.source}")

        rendered_path = None
        link_source = dotfile.source
        if dotfile.template:
            rendered_path = self.renderer.render(dotfile.source, resolved.variables, resolved.host)
            link_source = rendered_path

        target = dotfile.target
        backup_path = None

        # Re-checked here, not taken from the diff: the target may have changed since
        if self.fs.exists(target):
            action = self.session.resolve(target)
            if action == ConflictAction.SKIP:
                return ResourceOutcome(change, OutcomeStatus.SKIPPED, "existing target left in place")
            if action == ConflictAction.OVERWRITE:
                _remove_target(target)
            elif action == ConflictAction.BACKUP:
                backup_path = self._backup_target(target)
            else:
                raise AssertionError(f"unhandled conflict action: {action}")

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(link_source, target)
        except OSError as e:
            message = f"Failed to create symlink from {link_source} to {target}: {e}"
            if backup_path is not None:
                message += self._restore_backup(backup_path, target)
            raise LinkError(message) from e

        state.record_dotfile(
            DotfileState(
                source=str(dotfile.source),
                target=str(target),
                backup_path=str(backup_path) if backup_path else None,
                rendered_path=str(rendered_path) if rendered_path else None,
            )
        )
        detail = f"backed up to {backup_path}" if backup_path else ""
        return ResourceOutcome(change, OutcomeStatus.APPLIED, detail, backup_path=backup_path)

    def _backup_target(self, target: Path) -> Path:
        """Move ``target`` aside to ``{name}.backup.{timestamp}`` and return the new path."""
        stamp = self.clock.local_now().strftime(BACKUP_TIMESTAMP_FORMAT)
        base_name = f"{target.name}.backup.{stamp}"
        backup = target.with_name(base_name)
        counter = 1
        while self.fs.exists(backup):
            backup = target.with_name(f"{base_name}.{counter}")
            counter += 1

        try:
            os.rename(target, backup)
        except OSError as e:
            raise LinkError(f"Failed to create backup at {backup}: {e}") from e
        return backup

    def _restore_backup(self, backup: Path, target: Path) -> str:
        """Put a backup back after a failed link; returns text for the error message."""
        if self.fs.exists(target):
            return f" (original left at {backup})"
        try:
            os.rename(backup, target)
        except OSError as e:
            return f" (original left at {backup}: {e})"
        return " (original restored)"

    # ── Packages ──────────────────────────────────────────────────────

    def _apply_package(self, change: Change, package: ActivePackage, state: StateRecord) -> ResourceOutcome:
        entry = PackageState(name=package.name, manager=package.manager)

        # Fresh check right before installing; the diff may be stale
        if self.packages.is_installed(package.name, package.kind):
            if state.record_package(entry):
                return ResourceOutcome(change, OutcomeStatus.ADOPTED, "already installed")
            return ResourceOutcome(change, OutcomeStatus.UNCHANGED, "already installed")

        self.packages.install(package.name, package.kind)
        state.record_package(entry)
        return ResourceOutcome(change, OutcomeStatus.APPLIED)


def _remove_target(target: Path) -> None:
    try:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()
    except OSError as e:
        raise LinkError(f"Failed to remove existing target {target}: {e}") from e
