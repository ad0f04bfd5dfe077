"""Conflict resolution for dotfile targets that already exist.

A ``ResolutionSession`` is created per apply invocation and passed through
the apply loop. It carries the "apply to all" choice, so that choice never
outlives the run that made it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

import click


class ConflictAction(Enum):
    SKIP = "skip"  # Leave the target untouched, record nothing
    OVERWRITE = "overwrite"  # Remove the target, link, no backup
    BACKUP = "backup"  # Rename the target aside, link, record backup_path


@dataclass(frozen=True)
class ResolutionChoice:
    """An answer to a conflict prompt; ``apply_to_all`` makes it sticky for the run."""

    action: ConflictAction
    apply_to_all: bool = False


ConflictPrompt = Callable[[Path], ResolutionChoice]

_PROMPT_KEYS = {
    "s": ConflictAction.SKIP,
    "o": ConflictAction.OVERWRITE,
    "b": ConflictAction.BACKUP,
}


def ask_conflict(path: Path) -> ResolutionChoice:
    """Interactively ask how to resolve a conflict at ``path``."""
    if path.is_symlink():
        message = f"Target {path} is a symlink to a different source."
    else:
        message = f"Target {path} already exists."

    click.echo(message)
    click.echo("  [s]kip - Leave existing file/symlink")
    click.echo("  [o]verwrite - Replace with new symlink")
    click.echo("  [b]ackup - Backup original, create symlink")
    click.echo("  [a]pply to all remaining - Use one choice for all conflicts")
    answer = click.prompt(
        "How do you want to proceed?",
        type=click.Choice(["s", "o", "b", "a"]),
        default="s",
    )
    if answer != "a":
        return ResolutionChoice(_PROMPT_KEYS[answer])

    answer = click.prompt(
        "Action for all remaining conflicts",
        type=click.Choice(["s", "o", "b"]),
        default="b",
    )
    return ResolutionChoice(_PROMPT_KEYS[answer], apply_to_all=True)


class ResolutionSession:
    """Per-run conflict policy.

    In automatic mode every conflict resolves to BACKUP and the prompt is
    never called.
    """

    def __init__(self, prompt: ConflictPrompt | None = None, automatic: bool = False):
        self.prompt = prompt or ask_conflict
        self.automatic = automatic
        self.sticky: ConflictAction | None = None
        self.prompts_asked = 0

    @classmethod
    def non_interactive(cls) -> ResolutionSession:
        return cls(automatic=True)

    def resolve(self, target: Path) -> ConflictAction:
        if self.automatic:
            return ConflictAction.BACKUP
        if self.sticky is not None:
            return self.sticky

        self.prompts_asked += 1
        choice = self.prompt(target)
        if choice.apply_to_all:
            self.sticky = choice.action
        return choice.action
