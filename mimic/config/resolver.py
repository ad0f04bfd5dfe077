"""Config resolver — merge a host overlay into the base and filter by role.

The two merge rules are deliberately separate functions:
``merge_variables`` replaces on key collision, ``append_resources`` only
ever extends. Packages declared in base can therefore never be dropped by
an overlay.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, TypeVar

from mimic.config.models import (
    ActiveDotfile,
    ActivePackage,
    Config,
    DotfileDecl,
    HookDecl,
    HostContext,
    HostDecl,
    PackageDecl,
    ResolvedConfig,
)
from mimic.errors import ConfigError
from mimic.utils.paths import expand_path

logger = logging.getLogger(__name__)

T = TypeVar("T")


def merge_variables(base: dict[str, str], overlay: dict[str, str]) -> dict[str, str]:
    """Overlay variables replace base variables with the same key."""
    merged = dict(base)
    merged.update(overlay)
    return merged


def append_resources(base: Iterable[T], overlay: Iterable[T]) -> list[T]:
    """Overlay entries are appended after base entries; nothing is replaced."""
    return [*base, *overlay]


def should_apply_for_roles(
    only_roles: Iterable[str] | None,
    skip_roles: Iterable[str] | None,
    host_roles: Iterable[str],
) -> bool:
    """Role filter shared by dotfiles, packages and hooks.

    1. Any overlap with ``skip_roles`` excludes the resource.
    2. A non-empty ``only_roles`` must overlap the host roles.
    3. Otherwise the resource is included.
    """
    roles = set(host_roles)
    if skip_roles and roles.intersection(skip_roles):
        return False
    only = list(only_roles or [])
    if only:
        return bool(roles.intersection(only))
    return True


def select_host(config: Config, host_name: str | None, detected: str | None = None) -> tuple[str, HostDecl | None]:
    """Pick the host overlay to apply.

    Returns the effective host name and its overlay (None when the config
    declares no hosts at all).
    """
    name = host_name or detected or "default"
    if not config.hosts:
        return name, None

    if host_name:
        if host_name not in config.hosts:
            raise ConfigError(
                f"Host '{host_name}' not found in config. "
                f"Available hosts: {', '.join(config.host_names())}"
            )
        return host_name, config.hosts[host_name]

    # Auto-detected: accept the full name or its short form
    candidates = [c for c in (detected, (detected or "").split(".")[0]) if c]
    for candidate in candidates:
        if candidate in config.hosts:
            return candidate, config.hosts[candidate]

    raise ConfigError(
        f"Host '{name}' not found in config. Use --host to select one of: "
        f"{', '.join(config.host_names())}"
    )


def resolve(config: Config, host_name: str | None = None, detected: str | None = None) -> ResolvedConfig:
    """Resolve the desired state for one host.

    Args:
        config: Parsed config source.
        host_name: Explicitly selected host (takes precedence).
        detected: Auto-detected hostname, used when no host is selected.

    Raises:
        ConfigError: Unresolvable host, bad path expansion, or duplicate
            active dotfile targets.
    """
    name, host = select_host(config, host_name, detected)
    host_ctx = HostContext(name=name, roles=tuple(host.roles) if host else ())

    variables = dict(config.variables)
    dotfiles: list[DotfileDecl] = list(config.dotfiles)
    packages: list[PackageDecl] = config.packages.normalized()
    hooks: list[HookDecl] = list(config.hooks)

    if host is not None:
        variables = merge_variables(variables, host.variables)
        dotfiles = append_resources(dotfiles, host.dotfiles)
        packages = append_resources(packages, host.packages.normalized())
        hooks = append_resources(hooks, host.hooks)

    resolved = ResolvedConfig(host=host_ctx, variables=variables, base_dir=config.base_dir)

    for decl in dotfiles:
        if not should_apply_for_roles(decl.only_roles, decl.skip_roles, host_ctx.roles):
            logger.debug("Skipping dotfile %s (role filter)", decl.target)
            continue
        resolved.dotfiles.append(_activate_dotfile(decl, config.base_dir))

    seen_packages = set()
    for decl in packages:
        if not should_apply_for_roles(decl.only_roles, decl.skip_roles, host_ctx.roles):
            logger.debug("Skipping package %s (role filter)", decl.name)
            continue
        package = ActivePackage(name=decl.name, kind=decl.kind)
        # The same package declared twice is harmless; keep the first
        if package.identity in seen_packages:
            continue
        seen_packages.add(package.identity)
        resolved.packages.append(package)

    resolved.hooks = [
        h for h in hooks if should_apply_for_roles(h.only_roles, h.skip_roles, host_ctx.roles)
    ]

    validate_unique_targets(resolved.dotfiles)
    return resolved


def validate_unique_targets(dotfiles: list[ActiveDotfile]) -> None:
    """Reject two active dotfiles that link the same target."""
    by_target: dict[Path, ActiveDotfile] = {}
    for dotfile in dotfiles:
        existing = by_target.get(dotfile.target)
        if existing is not None:
            raise ConfigError(
                f"Duplicate dotfile target {dotfile.target}: declared by "
                f"'{existing.declared_source}' and '{dotfile.declared_source}'"
            )
        by_target[dotfile.target] = dotfile


def _activate_dotfile(decl: DotfileDecl, base_dir: Path) -> ActiveDotfile:
    return ActiveDotfile(
        source=expand_path(decl.source, base_dir=base_dir),
        target=expand_path(decl.target),
        template=decl.is_template,
        declared_source=decl.source,
    )
