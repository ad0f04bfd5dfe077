"""Template rendering boundary for template dotfiles.

The engine only needs two things: where a template's rendered output lives
(so diff can compare against it) and a way to produce it. Templates are
Jinja2 with strict undefined handling. The context holds the resolved
variables at the top level and under ``variables``, the selected host as
``host.name``/``host.roles``, and machine facts (``hostname``, ``username``,
``os``, ``arch``) at the top level and under ``system``. A resolved
variable wins over a machine fact of the same name.
"""

from __future__ import annotations

import getpass
import platform
from pathlib import Path

from jinja2 import Environment, StrictUndefined, TemplateError

from mimic.config.models import TEMPLATE_SUFFIXES, HostContext
from mimic.errors import LinkError
from mimic.probes import detect_hostname

# Names as the original tool reported them
_OS_NAMES = {"darwin": "macos"}
_ARCH_NAMES = {"arm64": "aarch64", "amd64": "x86_64"}


def default_rendered_dir() -> Path:
    return Path.home() / ".mimic" / "rendered"


def system_variables() -> dict[str, str]:
    """Facts about this machine available to every template."""
    try:
        username = getpass.getuser()
    except (OSError, KeyError):
        username = "unknown"
    system = platform.system().lower()
    machine = platform.machine().lower()
    return {
        "hostname": detect_hostname(),
        "username": username,
        "os": _OS_NAMES.get(system, system),
        "arch": _ARCH_NAMES.get(machine, machine),
    }


class TemplateRenderer:
    """Renders template dotfiles into ``rendered_dir``."""

    def __init__(self, rendered_dir: str | Path | None = None):
        self.rendered_dir = Path(rendered_dir) if rendered_dir else default_rendered_dir()
        self.jinja = Environment(
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def rendered_path(self, source: Path) -> Path:
        """Where the rendered output for ``source`` is written."""
        name = source.name
        for suffix in TEMPLATE_SUFFIXES:
            if name.endswith(suffix):
                name = name[: -len(suffix)]
                break
        return self.rendered_dir / name

    def context(self, variables: dict[str, str], host: HostContext) -> dict:
        system = system_variables()
        context = {**system, **variables}
        context["variables"] = dict(variables)
        context["system"] = system
        context["host"] = {"name": host.name, "roles": list(host.roles)}
        return context

    def render_text(self, text: str, variables: dict[str, str], host: HostContext) -> str:
        try:
            return self.jinja.from_string(text).render(**self.context(variables, host))
        except TemplateError as e:
            raise LinkError(f"Failed to render template: {e}") from e

    def render_file(self, source: Path, variables: dict[str, str], host: HostContext) -> str:
        """Read ``source`` and return its rendered text."""
        try:
            text = source.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise LinkError(f"Failed to read template {source}: {e}") from e
        try:
            return self.render_text(text, variables, host)
        except LinkError as e:
            raise LinkError(f"{source}: {e}") from e

    def render(self, source: Path, variables: dict[str, str], host: HostContext) -> Path:
        """Render ``source`` to its rendered path and return that path."""
        rendered = self.render_file(source, variables, host)
        output = self.rendered_path(source)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(rendered, encoding="utf-8")
        except OSError as e:
            raise LinkError(f"Failed to write rendered template {output}: {e}") from e
        return output
