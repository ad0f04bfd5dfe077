"""Undo engine — reverse the last apply using only the persisted record.

Config is never consulted. A target that no longer looks like the symlink
mimic created is left alone and reported; undo never destroys data it did
not create. Packages are dropped from the record but never uninstalled.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from mimic.errors import EXIT_DRIFT, EXIT_OK, ProbeError
from mimic.probes import Clock, FilesystemProbe, SystemClock
from mimic.state.store import DotfileState, PackageState, StateStore

logger = logging.getLogger(__name__)


class UndoStatus(Enum):
    REMOVED = "removed"  # Symlink removed, nothing to restore
    RESTORED = "restored"  # Symlink removed and backup moved back
    ALREADY_ABSENT = "already_absent"
    SKIPPED = "skipped"  # Target modified out of band, left untouched
    FAILED = "failed"


@dataclass
class UndoOutcome:
    entry: DotfileState
    status: UndoStatus
    detail: str = ""

    @property
    def target(self) -> str:
        return self.entry.target


@dataclass
class UndoResult:
    outcomes: list[UndoOutcome] = field(default_factory=list)
    dropped_packages: list[PackageState] = field(default_factory=list)
    nothing_to_undo: bool = False

    def _count(self, status: UndoStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def symlinks_removed(self) -> int:
        return self._count(UndoStatus.REMOVED) + self._count(UndoStatus.RESTORED)

    @property
    def backups_restored(self) -> int:
        return self._count(UndoStatus.RESTORED)

    @property
    def skipped(self) -> list[UndoOutcome]:
        return [o for o in self.outcomes if o.status == UndoStatus.SKIPPED]

    @property
    def failures(self) -> list[UndoOutcome]:
        return [o for o in self.outcomes if o.status == UndoStatus.FAILED]

    @property
    def exit_code(self) -> int:
        return EXIT_DRIFT if self.skipped or self.failures else EXIT_OK


class UndoEngine:
    def __init__(self, store: StateStore, fs: FilesystemProbe | None = None, clock: Clock | None = None):
        self.store = store
        self.fs = fs or FilesystemProbe()
        self.clock = clock or SystemClock()

    def run(self) -> UndoResult:
        """Reverse every tracked dotfile and persist an empty record.

        Raises:
            StateError: The record cannot be read or the cleared one saved.
        """
        state = self.store.load()
        if state.is_empty:
            return UndoResult(nothing_to_undo=True)

        result = UndoResult(dropped_packages=list(state.packages))
        # Reverse apply order; outcomes are reported in record order
        for entry in reversed(state.dotfiles):
            outcome = self.undo_dotfile(entry)
            logger.debug("%s: %s %s", entry.target, outcome.status.value, outcome.detail)
            result.outcomes.append(outcome)
        result.outcomes.reverse()

        state.clear()
        state.touch(self.clock.utc_now())
        self.store.save(state)
        return result

    def undo_dotfile(self, entry: DotfileState) -> UndoOutcome:
        target = Path(entry.target)
        expected = Path(entry.rendered_path or entry.source)

        removed = False
        if self.fs.exists(target):
            mismatch = self._mismatch(target, expected)
            if mismatch:
                detail = f"target modified since apply ({mismatch}), left untouched"
                if entry.backup_path:
                    detail += f"; backup remains at {entry.backup_path}"
                return UndoOutcome(entry, UndoStatus.SKIPPED, detail)
            try:
                target.unlink()
            except OSError as e:
                return UndoOutcome(entry, UndoStatus.FAILED, f"Failed to remove symlink {target}: {e}")
            removed = True

        self._cleanup_rendered(entry)

        if entry.backup_path:
            backup = Path(entry.backup_path)
            if self.fs.exists(backup):
                try:
                    os.rename(backup, target)
                except OSError as e:
                    return UndoOutcome(
                        entry,
                        UndoStatus.FAILED,
                        f"Failed to restore backup from {backup} to {target}: {e}",
                    )
                return UndoOutcome(entry, UndoStatus.RESTORED, f"restored from {backup}")
            if removed:
                return UndoOutcome(entry, UndoStatus.REMOVED, f"backup not found: {backup}")
            return UndoOutcome(entry, UndoStatus.ALREADY_ABSENT, f"backup not found: {backup}")

        if removed:
            return UndoOutcome(entry, UndoStatus.REMOVED)
        return UndoOutcome(entry, UndoStatus.ALREADY_ABSENT)

    def _mismatch(self, target: Path, expected: Path) -> str:
        """Describe how ``target`` differs from the link we created, or '' if it matches."""
        if not self.fs.is_symlink(target):
            return "not a symlink"
        try:
            current = self.fs.read_link(target)
        except ProbeError as e:
            return str(e)

        if os.path.normpath(current) == os.path.normpath(expected):
            return ""
        actual_canonical = self.fs.canonicalize(current)
        if actual_canonical is not None and actual_canonical == self.fs.canonicalize(expected):
            return ""
        return f"points to {current}"

    def _cleanup_rendered(self, entry: DotfileState) -> None:
        if not entry.rendered_path:
            return
        rendered = Path(entry.rendered_path)
        try:
            rendered.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to clean up rendered file %s: %s", rendered, e)
