"""State store — load and atomically persist the applied-state record.

The record is replaced wholesale on every save: serialize, write a sibling
temp file, fsync, then ``os.replace`` over the canonical path. The rename
is the only commit point, so readers see either the old record or the new
one, never a partial file.

No locking is performed; a single writer at a time is assumed.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from mimic.errors import StateError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def default_state_path() -> Path:
    return Path.home() / ".config" / "mimic" / "state.json"


@dataclass
class DotfileState:
    """A symlink mimic created. ``backup_path`` is set only for Backup resolutions."""

    source: str
    target: str
    backup_path: str | None = None
    rendered_path: str | None = None


@dataclass
class PackageState:
    """A package mimic installed or adopted."""

    name: str
    manager: str = "brew"


@dataclass
class StateRecord:
    """Everything mimic has applied on this machine."""

    dotfiles: list[DotfileState] = field(default_factory=list)
    packages: list[PackageState] = field(default_factory=list)
    applied_at: str = ""
    applied_commit: str | None = None
    active_host: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.dotfiles and not self.packages

    def find_dotfile(self, target: str) -> DotfileState | None:
        for entry in self.dotfiles:
            if entry.target == target:
                return entry
        return None

    def record_dotfile(self, entry: DotfileState) -> None:
        """Track a dotfile, replacing any earlier entry for the same target."""
        self.dotfiles = [d for d in self.dotfiles if d.target != entry.target]
        self.dotfiles.append(entry)

    def has_package(self, name: str, manager: str = "brew") -> bool:
        return any(p.name == name and p.manager == manager for p in self.packages)

    def record_package(self, entry: PackageState) -> bool:
        """Track a package. Additive only; returns False if already tracked."""
        if self.has_package(entry.name, entry.manager):
            return False
        self.packages.append(entry)
        return True

    def clear(self) -> None:
        self.dotfiles.clear()
        self.packages.clear()
        self.applied_commit = None
        self.active_host = None

    def touch(self, now: datetime | None = None) -> None:
        self.applied_at = (now or datetime.now(timezone.utc)).isoformat()

    def to_dict(self) -> dict:
        return {
            "version": STATE_VERSION,
            "applied_at": self.applied_at,
            "applied_commit": self.applied_commit,
            "active_host": self.active_host,
            "dotfiles": [
                {
                    "source": d.source,
                    "target": d.target,
                    "backup_path": d.backup_path,
                    "rendered_path": d.rendered_path,
                }
                for d in self.dotfiles
            ],
            "packages": [{"name": p.name, "manager": p.manager} for p in self.packages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> StateRecord:
        return cls(
            applied_at=data.get("applied_at", ""),
            applied_commit=data.get("applied_commit"),
            active_host=data.get("active_host"),
            dotfiles=[
                DotfileState(
                    source=d["source"],
                    target=d["target"],
                    backup_path=d.get("backup_path"),
                    rendered_path=d.get("rendered_path"),
                )
                for d in data.get("dotfiles", [])
            ],
            packages=[
                PackageState(name=p["name"], manager=p.get("manager", "brew"))
                for p in data.get("packages", [])
            ],
        )


class StateStore:
    """Reads and writes the state record at a fixed path."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else default_state_path()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> StateRecord:
        """Return the persisted record, or an empty one on first use.

        Raises:
            StateError: The file exists but cannot be read or parsed.
        """
        if not self.path.exists():
            return StateRecord()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StateError(f"Failed to read state file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StateError(f"State file {self.path} is corrupt: expected an object")
        try:
            return StateRecord.from_dict(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise StateError(f"State file {self.path} is corrupt: {e!r}") from e

    def save(self, state: StateRecord) -> None:
        """Atomically replace the persisted record with ``state``.

        Raises:
            StateError: The record could not be written or committed.
        """
        text = json.dumps(state.to_dict(), indent=2) + "\n"
        try:
            _atomic_write_text(self.path, text)
        except OSError as e:
            raise StateError(f"Failed to save state to {self.path}: {e}") from e
        logger.debug("State saved to %s", self.path)


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(path.parent)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def _fsync_dir(directory: Path) -> None:
    try:
        dir_fd = os.open(str(directory), os.O_DIRECTORY)
    except OSError:
        # Not supported on every platform; the rename itself has committed
        return
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)
