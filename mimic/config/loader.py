"""Config loader — locate the config source and parse it into models.

TOML is the primary format; YAML is accepted for ``.yaml``/``.yml`` files.
Unknown keys are ignored so newer configs still load on older versions.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

import yaml

from mimic.config.models import (
    Config,
    DotfileDecl,
    HookDecl,
    HostDecl,
    PackageDecl,
    PackageKind,
    PackagesDecl,
)
from mimic.errors import ConfigError

CONFIG_FILENAME = "mimic.toml"


def default_config_locations() -> list[Path]:
    """Search order used when no explicit config path is given."""
    return [
        Path.cwd() / CONFIG_FILENAME,
        Path.home() / ".config" / "mimic" / "config.toml",
    ]


def find_config(explicit: str | Path | None = None) -> Path:
    """Return the config path to use, or raise ConfigError listing where we looked."""
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        return path

    candidates = default_config_locations()
    for candidate in candidates:
        if candidate.exists():
            return candidate

    searched = "\n".join(f"  - {c}" for c in candidates)
    raise ConfigError(
        f"Config file not found. Searched:\n{searched}\n\nUse --config to specify a custom path."
    )


def load_config(path: str | Path) -> Config:
    """Read and parse a config file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    data = parse_config_text(text, fmt=_format_for(path), origin=str(path))
    config = config_from_dict(data, origin=str(path))
    config.base_dir = path.resolve().parent
    config.path = path
    return config


def parse_config_text(text: str, fmt: str = "toml", origin: str = "<string>") -> dict:
    """Parse raw config text into a plain dict."""
    try:
        if fmt == "yaml":
            data = yaml.safe_load(text) or {}
        else:
            data = tomllib.loads(text)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to parse {origin}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Failed to parse {origin}: top level must be a table")
    return data


def config_from_dict(data: dict, origin: str = "<config>") -> Config:
    """Build a Config from parsed data, validating the shape of known keys."""
    hosts_data = _expect(data.get("hosts", {}), dict, "hosts", origin)
    hosts = {}
    for name, host_data in hosts_data.items():
        host_data = _expect(host_data, dict, f"hosts.{name}", origin)
        hosts[name] = HostDecl(
            roles=_str_list(host_data.get("roles", []), f"hosts.{name}.roles", origin),
            variables=_variables(host_data.get("variables", {}), f"hosts.{name}.variables", origin),
            dotfiles=_dotfiles(host_data.get("dotfiles", []), f"hosts.{name}.dotfiles", origin),
            packages=_packages(host_data.get("packages", {}), f"hosts.{name}.packages", origin),
            hooks=_hooks(host_data.get("hooks", []), f"hosts.{name}.hooks", origin),
        )

    return Config(
        variables=_variables(data.get("variables", {}), "variables", origin),
        dotfiles=_dotfiles(data.get("dotfiles", []), "dotfiles", origin),
        packages=_packages(data.get("packages", {}), "packages", origin),
        hooks=_hooks(data.get("hooks", []), "hooks", origin),
        hosts=hosts,
    )


# ── Helpers ──────────────────────────────────────────────────────────


def _format_for(path: Path) -> str:
    return "yaml" if path.suffix.lower() in (".yaml", ".yml") else "toml"


def _expect(value, kind: type, key: str, origin: str):
    if not isinstance(value, kind):
        raise ConfigError(f"{origin}: '{key}' must be a {_type_name(kind)}")
    return value


def _type_name(kind: type) -> str:
    return {dict: "table", list: "list", str: "string", bool: "boolean"}.get(kind, kind.__name__)


def _str_list(value, key: str, origin: str) -> list[str]:
    value = _expect(value, list, key, origin)
    for item in value:
        _expect(item, str, f"{key}[]", origin)
    return list(value)


def _variables(value, key: str, origin: str) -> dict[str, str]:
    value = _expect(value, dict, key, origin)
    # Scalars are accepted and stringified; nested tables are not
    variables = {}
    for name, raw in value.items():
        if isinstance(raw, (dict, list)):
            raise ConfigError(f"{origin}: '{key}.{name}' must be a scalar value")
        variables[str(name)] = str(raw).lower() if isinstance(raw, bool) else str(raw)
    return variables


def _required_str(entry: dict, field_name: str, key: str, origin: str) -> str:
    if field_name not in entry:
        raise ConfigError(f"{origin}: {key} entry is missing '{field_name}'")
    return _expect(entry[field_name], str, f"{key}.{field_name}", origin)


def _dotfiles(value, key: str, origin: str) -> list[DotfileDecl]:
    dotfiles = []
    for entry in _expect(value, list, key, origin):
        entry = _expect(entry, dict, f"{key}[]", origin)
        dotfiles.append(
            DotfileDecl(
                source=_required_str(entry, "source", key, origin),
                target=_required_str(entry, "target", key, origin),
                template=_expect(entry.get("template", False), bool, f"{key}.template", origin),
                only_roles=_str_list(entry.get("only_roles") or [], f"{key}.only_roles", origin),
                skip_roles=_str_list(entry.get("skip_roles") or [], f"{key}.skip_roles", origin),
            )
        )
    return dotfiles


def _packages(value, key: str, origin: str) -> PackagesDecl:
    value = _expect(value, dict, key, origin)
    homebrew = []
    for entry in _expect(value.get("homebrew", []), list, f"{key}.homebrew", origin):
        entry = _expect(entry, dict, f"{key}.homebrew[]", origin)
        kind_name = entry.get("type", PackageKind.FORMULA.value)
        try:
            kind = PackageKind(kind_name)
        except ValueError as e:
            raise ConfigError(
                f"{origin}: {key}.homebrew entry has unknown type '{kind_name}' "
                f"(expected 'formula' or 'cask')"
            ) from e
        homebrew.append(
            PackageDecl(
                name=_required_str(entry, "name", f"{key}.homebrew", origin),
                kind=kind,
                only_roles=_str_list(entry.get("only_roles") or [], f"{key}.homebrew.only_roles", origin),
                skip_roles=_str_list(entry.get("skip_roles") or [], f"{key}.homebrew.skip_roles", origin),
            )
        )
    return PackagesDecl(
        homebrew=homebrew,
        brew=_str_list(value.get("brew", []), f"{key}.brew", origin),
        cask=_str_list(value.get("cask", []), f"{key}.cask", origin),
    )


_HOOK_FIELDS = {"type", "name", "command", "on_failure", "only_roles", "skip_roles"}


def _hooks(value, key: str, origin: str) -> list[HookDecl]:
    hooks = []
    for entry in _expect(value, list, key, origin):
        entry = _expect(entry, dict, f"{key}[]", origin)
        hooks.append(
            HookDecl(
                type=_required_str(entry, "type", key, origin),
                name=str(entry.get("name", "")),
                command=str(entry.get("command", "")),
                on_failure=str(entry.get("on_failure", "continue")),
                only_roles=_str_list(entry.get("only_roles") or [], f"{key}.only_roles", origin),
                skip_roles=_str_list(entry.get("skip_roles") or [], f"{key}.skip_roles", origin),
                options={k: v for k, v in entry.items() if k not in _HOOK_FIELDS},
            )
        )
    return hooks
