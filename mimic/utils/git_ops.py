"""Git operations — find the commit the dotfiles repository is at."""

from __future__ import annotations

import logging
from pathlib import Path

from git import InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)


def head_commit(path: Path) -> str | None:
    """Return the HEAD commit SHA of the repo containing ``path``, or None.

    A directory that is not inside a Git repository, or a repository
    without commits, yields None.
    """
    try:
        repo = Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None

    try:
        return repo.head.commit.hexsha
    except ValueError:
        # Repository exists but HEAD points at an unborn branch
        logger.debug("Repository at %s has no commits", repo.working_dir)
        return None
