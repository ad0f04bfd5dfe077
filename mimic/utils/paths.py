"""Path expansion — tilde and environment variables, plus canonicalization."""

from __future__ import annotations

import os
import re
from pathlib import Path

from mimic.errors import ConfigError

# $VAR or ${VAR}
_ENV_PATTERN = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z0-9_]+)")


def expand_str(value: str) -> str:
    """Expand ``~``, ``~/...``, ``$VAR`` and ``${VAR}`` in a string.

    Raises:
        ConfigError: If a referenced environment variable is not set.
    """
    if value == "~" or value.startswith("~/"):
        value = str(Path.home()) + value[1:]

    def _replace(match: re.Match) -> str:
        name = match.group(1) if match.group(1) is not None else match.group(2)
        if not name:
            return match.group(0)
        if name not in os.environ:
            raise ConfigError(f"Environment variable '{name}' is not set (in '{value}')")
        return os.environ[name]

    return _ENV_PATTERN.sub(_replace, value)


def expand_path(value: str | Path, base_dir: Path | None = None) -> Path:
    """Expand a path and make it absolute without following symlinks.

    Relative results are anchored at ``base_dir`` (or the working directory).
    The final component is never resolved, so a target that is itself a
    symlink keeps its own path.
    """
    expanded = Path(expand_str(str(value)))
    if not expanded.is_absolute():
        expanded = (base_dir or Path.cwd()) / expanded
    return Path(os.path.normpath(expanded))


def canonicalize(path: str | Path) -> Path | None:
    """Fully resolve a path, or return None if it (or a link in it) dangles."""
    try:
        return Path(path).resolve(strict=True)
    except (OSError, RuntimeError):
        return None
