"""Data models for config declarations and the resolved desired state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

TEMPLATE_SUFFIXES = (".tmpl", ".hbs")


class ResourceType(Enum):
    """Closed set of resource kinds the engine manages."""

    DOTFILE = "dotfile"
    PACKAGE = "package"


class PackageKind(Enum):
    FORMULA = "formula"
    CASK = "cask"


# --- Declarations (as written in the config source) ---


@dataclass
class DotfileDecl:
    """A dotfile entry as declared in the config."""

    source: str
    target: str
    template: bool = False
    only_roles: list[str] = field(default_factory=list)
    skip_roles: list[str] = field(default_factory=list)

    @property
    def is_template(self) -> bool:
        return self.template or self.source.endswith(TEMPLATE_SUFFIXES)


@dataclass
class PackageDecl:
    """A package entry in the verbose ``packages.homebrew`` form."""

    name: str
    kind: PackageKind = PackageKind.FORMULA
    only_roles: list[str] = field(default_factory=list)
    skip_roles: list[str] = field(default_factory=list)


@dataclass
class PackagesDecl:
    """Both declaration shapes: simple ``brew``/``cask`` lists and verbose entries."""

    homebrew: list[PackageDecl] = field(default_factory=list)
    brew: list[str] = field(default_factory=list)
    cask: list[str] = field(default_factory=list)

    def normalized(self) -> list[PackageDecl]:
        """Fold the simple lists into verbose entries, verbose entries first."""
        packages = list(self.homebrew)
        packages.extend(PackageDecl(name=name, kind=PackageKind.FORMULA) for name in self.brew)
        packages.extend(PackageDecl(name=name, kind=PackageKind.CASK) for name in self.cask)
        return packages


@dataclass
class HookDecl:
    """A post-apply hook. Only its role filters are interpreted during resolution."""

    type: str
    name: str = ""
    command: str = ""
    on_failure: str = "continue"
    only_roles: list[str] = field(default_factory=list)
    skip_roles: list[str] = field(default_factory=list)
    options: dict = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.type


@dataclass
class HostDecl:
    """A ``hosts.<name>`` overlay."""

    roles: list[str] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)
    dotfiles: list[DotfileDecl] = field(default_factory=list)
    packages: PackagesDecl = field(default_factory=PackagesDecl)
    hooks: list[HookDecl] = field(default_factory=list)


@dataclass
class Config:
    """The whole config source, before any host is selected."""

    variables: dict[str, str] = field(default_factory=dict)
    dotfiles: list[DotfileDecl] = field(default_factory=list)
    packages: PackagesDecl = field(default_factory=PackagesDecl)
    hooks: list[HookDecl] = field(default_factory=list)
    hosts: dict[str, HostDecl] = field(default_factory=dict)
    base_dir: Path = field(default_factory=Path.cwd)
    path: Path | None = None

    def host_names(self) -> list[str]:
        return sorted(self.hosts)


# --- Resolved desired state ---


@dataclass(frozen=True)
class HostContext:
    """The selected host and its roles. Never persisted."""

    name: str
    roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class ActiveDotfile:
    """A dotfile that survived role filtering, with expanded paths."""

    source: Path
    target: Path
    template: bool = False
    declared_source: str = ""

    resource_type = ResourceType.DOTFILE

    @property
    def identity(self) -> str:
        return str(self.target)


@dataclass(frozen=True)
class ActivePackage:
    """A package that survived role filtering, in its single normalized shape."""

    name: str
    kind: PackageKind = PackageKind.FORMULA
    manager: str = "brew"

    resource_type = ResourceType.PACKAGE

    @property
    def identity(self) -> str:
        return f"{self.manager}:{self.name}"


@dataclass
class ResolvedConfig:
    """Desired state for one host: active resources in declaration order."""

    host: HostContext
    variables: dict[str, str] = field(default_factory=dict)
    dotfiles: list[ActiveDotfile] = field(default_factory=list)
    packages: list[ActivePackage] = field(default_factory=list)
    hooks: list[HookDecl] = field(default_factory=list)
    base_dir: Path = field(default_factory=Path.cwd)
