"""Mimic CLI — the main entry point for dotfile and package reconciliation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mimic import __version__
from mimic.errors import EXIT_DRIFT, EXIT_FATAL, EXIT_OK, MimicError

console = Console()
err_console = Console(stderr=True)


@dataclass
class Options:
    config: str | None = None
    host: str | None = None
    yes: bool = False
    dry_run: bool = False
    verbose: bool = False
    state: str | None = None


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", default=None, help="Path to config file")
@click.option("--host", "-H", default=None, help="Select host configuration")
@click.option("--yes", "-y", is_flag=True, help="Skip prompts; conflicts are backed up")
@click.option("--dry-run", "-n", is_flag=True, help="Show what would be done without doing it")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--state", default=None, help="Path to state file")
@click.pass_context
def main(ctx, config, host, yes, dry_run, verbose, state):
    """Mimic — declarative dotfile and package management.

    Links dotfiles and installs packages declared in a config file,
    remembers what it did, and can report drift or undo the last apply.
    """
    from mimic.utils.log import setup_logging

    setup_logging("DEBUG" if verbose else "WARNING", console=err_console)
    ctx.obj = Options(config=config, host=host, yes=yes, dry_run=dry_run, verbose=verbose, state=state)


# ── Shared helpers ───────────────────────────────────────────────────


def _fatal(error: MimicError) -> None:
    """Report ``error`` and exit: 2 for config/state errors, 1 for resource errors."""
    err_console.print(f"[bold red]Error:[/] {escape(str(error))}")
    raise SystemExit(EXIT_FATAL if error.fatal else EXIT_DRIFT)


def _resolve(opts: Options):
    """Load the config and resolve it for the selected host."""
    from mimic.config.loader import find_config, load_config
    from mimic.config.resolver import resolve
    from mimic.probes import detect_hostname

    config_path = find_config(opts.config)
    if opts.verbose:
        console.print(f"[bright_black]Loading config:[/] {escape(str(config_path))}")
    config = load_config(config_path)
    resolved = resolve(config, host_name=opts.host, detected=detect_hostname())
    if opts.verbose and config.hosts:
        console.print(f"[bright_black]Using host:[/] {escape(resolved.host.name)}")
    return config, resolved


def _state_store(opts: Options):
    from mimic.state.store import StateStore

    return StateStore(opts.state)


def _format_change(change) -> str:
    from mimic.engine.diff import ChangeKind

    label = change.resource_type.value
    description = escape(change.description)
    if change.kind == ChangeKind.ADD:
        return f"[bold green]+[/] {label} {description}"
    if change.kind == ChangeKind.MODIFY:
        return f"[bold yellow]~[/] {label} {description} [yellow]({escape(change.reason)})[/]"
    if change.kind == ChangeKind.PROBE_FAILED:
        return f"[bold red]![/] {label} {description} [red](probe failed: {escape(change.reason)})[/]"
    return f"[bright_black]✓ {description}[/]"


def _print_changes(changes, title: str) -> None:
    console.print(f"[bold]{title}[/]")
    for change in changes:
        console.print(_format_change(change))


# ── Diff ─────────────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def diff(opts: Options):
    """Show how the machine differs from the config, without changing anything."""
    from mimic.engine.diff import ChangeKind, DiffEngine
    from mimic.probes import HomebrewManager

    try:
        _, resolved = _resolve(opts)
    except MimicError as e:
        _fatal(e)

    changes = DiffEngine(HomebrewManager()).diff(resolved)
    if not changes:
        console.print("[bright_black]No resources declared.[/]")
        return

    _print_changes(changes, "Changes:")

    adds = sum(1 for c in changes if c.kind == ChangeKind.ADD)
    modifies = sum(1 for c in changes if c.kind == ChangeKind.MODIFY)
    failed = sum(1 for c in changes if c.kind == ChangeKind.PROBE_FAILED)
    if adds or modifies or failed:
        console.print()
        summary = f"[bold]Summary:[/] [green]{adds}[/] to add, [yellow]{modifies}[/] to modify"
        if failed:
            summary += f", [red]{failed}[/] could not be inspected"
        console.print(summary)
        raise SystemExit(EXIT_DRIFT)


# ── Apply ────────────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def apply(opts: Options):
    """Link dotfiles and install packages declared in the config."""
    from mimic.engine.apply import ApplyTransaction, OutcomeStatus
    from mimic.engine.conflict import ResolutionSession
    from mimic.engine.diff import DiffEngine
    from mimic.hooks import HookRunner
    from mimic.probes import HomebrewManager
    from mimic.utils.git_ops import head_commit

    try:
        config, resolved = _resolve(opts)
    except MimicError as e:
        _fatal(e)

    homebrew = HomebrewManager()
    changes = DiffEngine(homebrew).diff(resolved)
    pending = [c for c in changes if c.needs_apply]

    _print_changes(changes, "Changes to apply:")

    if opts.dry_run:
        console.print()
        console.print("[yellow]Dry-run mode: No changes were made.[/]")
        return

    if pending and not opts.yes:
        console.print()
        if not click.confirm("Apply these changes?", default=False):
            console.print("[yellow]Aborted.[/]")
            return

    session = ResolutionSession(automatic=opts.yes)
    transaction = ApplyTransaction(
        store=_state_store(opts),
        packages=homebrew,
        session=session,
        hook_runner=HookRunner(working_dir=config.base_dir),
    )

    console.print()
    console.print("[bold]Applying changes...[/]")
    try:
        result = transaction.run(changes, resolved, applied_commit=head_commit(config.base_dir))
    except MimicError as e:
        _fatal(e)

    for outcome in result.outcomes:
        description = escape(outcome.description)
        if outcome.status == OutcomeStatus.FAILED:
            console.print(f"  [red]✗[/] {description} - {escape(outcome.detail)}")
        elif outcome.status == OutcomeStatus.SKIPPED:
            console.print(f"  [yellow]↷[/] {description} (skipped)")
        elif outcome.status != OutcomeStatus.UNCHANGED or opts.verbose:
            suffix = f" ({escape(outcome.detail)})" if outcome.detail else ""
            console.print(f"  [green]✓[/] {description}{suffix}")

    if result.hook_results:
        console.print()
        console.print("[bold cyan]Activation hooks:[/]")
        for hook in result.hook_results:
            if hook.passed:
                console.print(f"  [green]✓[/] {escape(hook.name)} ({hook.duration_ms}ms)")
            else:
                marker = "[red]✗[/]" if hook.fail_on_error else "[yellow]⚠[/]"
                reason = hook.error or hook.stderr.strip() or f"exit code {hook.exit_code}"
                console.print(f"  {marker} {escape(hook.name)} - {escape(reason)}")

    console.print()
    if result.failed:
        console.print(f"[bold yellow]⚠ Applied with failures:[/] {result.summary()}")
    else:
        console.print(f"[bold green]✓ Successfully applied configuration[/] ({result.summary()})")
    console.print(f"  [bright_black]State saved to:[/] {escape(str(transaction.store.path))}")
    raise SystemExit(result.exit_code)


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def status(opts: Options):
    """Check for drift from the last applied configuration."""
    from mimic.engine.status import StatusChecker
    from mimic.probes import HomebrewManager

    store = _state_store(opts)
    if not store.exists():
        console.print("[yellow]No state file found.[/]")
        console.print("  Run 'mimic apply' to initialize.")
        return

    try:
        state = store.load()
    except MimicError as e:
        _fatal(e)

    if state.is_empty:
        console.print("[bright_black]No resources managed.[/]")
        return

    packages = HomebrewManager() if state.packages else None
    report = StatusChecker(packages).check(state)

    console.print("[bold]Status Report[/]")
    console.print()
    for label, entries, verb in (("dotfiles", report.dotfiles, "in sync"), ("packages", report.packages, "installed")):
        if not entries:
            continue
        ok = sum(1 for e in entries if e.in_sync)
        marker = "[green]✓[/]" if ok == len(entries) else "[yellow]✗[/]"
        console.print(f"  {marker} {ok}/{len(entries)} {label} {verb}")

    if opts.verbose:
        for entry in report.entries:
            if entry.in_sync:
                console.print(f"  [green]✓[/] {escape(entry.resource)}")

    if report.has_drift:
        console.print()
        console.print("[bold yellow]Drift detected:[/]")
        for entry in report.drifted:
            detail = f": {entry.detail}" if entry.detail else ""
            console.print(f"  [red]✗[/] {escape(entry.resource)} ({entry.drift_type}{escape(detail)})")
        console.print()
        console.print("[bold yellow]Run 'mimic apply' to reconcile drift.[/]")
    else:
        console.print()
        console.print("[bold green]✓ All resources in sync[/]")
    raise SystemExit(report.exit_code)


# ── Undo ─────────────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def undo(opts: Options):
    """Undo the last apply: remove symlinks and restore backups."""
    from mimic.engine.undo import UndoEngine, UndoStatus

    store = _state_store(opts)
    try:
        result = UndoEngine(store).run()
    except MimicError as e:
        _fatal(e)

    if result.nothing_to_undo:
        console.print("[yellow]Nothing to undo.[/]")
        return

    console.print("[bold]Undoing last apply operation...[/]")
    console.print()
    for outcome in result.outcomes:
        target = escape(outcome.target)
        detail = escape(outcome.detail)
        if outcome.status == UndoStatus.RESTORED:
            console.print(f"  [green]✓[/] Restored backup: {target} ({detail})")
        elif outcome.status == UndoStatus.REMOVED:
            console.print(f"  [green]✓[/] Removed symlink: {target}")
        elif outcome.status == UndoStatus.ALREADY_ABSENT:
            if opts.verbose:
                console.print(f"  [bright_black]○ Symlink already removed: {target}[/]")
        elif outcome.status == UndoStatus.SKIPPED:
            console.print(f"  [yellow]↷[/] Skipped {target}: {detail}")
        else:
            console.print(f"  [red]✗[/] {detail}")

    if result.dropped_packages and opts.verbose:
        names = ", ".join(p.name for p in result.dropped_packages)
        console.print(f"  [bright_black]Packages no longer tracked (not uninstalled): {escape(names)}[/]")

    console.print()
    if result.exit_code == EXIT_OK:
        console.print("[bold green]✓ Successfully undone last apply[/]")
    else:
        console.print("[bold yellow]⚠ Undo completed with problems[/]")
    console.print(f"  {result.symlinks_removed} symlinks removed")
    console.print(f"  {result.backups_restored} backups restored")
    if result.skipped:
        console.print(f"  {len(result.skipped)} targets skipped")
    if result.failures:
        console.print(f"  {len(result.failures)} errors occurred")
    raise SystemExit(result.exit_code)


# ── Hosts ────────────────────────────────────────────────────────────


@main.group()
def hosts():
    """Inspect host configurations."""


@hosts.command(name="list")
@click.pass_obj
def list_hosts(opts: Options):
    """List all configured hosts."""
    from mimic.config.loader import find_config, load_config

    try:
        config = load_config(find_config(opts.config))
    except MimicError as e:
        _fatal(e)

    if not config.hosts:
        console.print("[yellow]No hosts configured.[/]")
        console.print("Add a [hosts.name] section to your config file.", markup=False)
        return

    table = Table(title=f"Configured hosts ({len(config.hosts)})")
    table.add_column("Host", style="green")
    table.add_column("Roles")
    for name in config.host_names():
        roles = config.hosts[name].roles
        table.add_row(escape(name), escape(", ".join(roles)) if roles else "[bright_black]no roles[/]")
    console.print(table)


@hosts.command()
@click.argument("name")
@click.pass_obj
def show(opts: Options, name: str):
    """Show the merged, role-filtered configuration for host NAME."""
    from mimic.config.loader import find_config, load_config
    from mimic.config.resolver import resolve

    try:
        config = load_config(find_config(opts.config))
        resolved = resolve(config, host_name=name)
    except MimicError as e:
        _fatal(e)

    console.print(f"[bold]Host:[/] [green]{escape(resolved.host.name)}[/]")
    roles = ", ".join(resolved.host.roles) or "(none)"
    console.print(f"[bold]Roles:[/] {escape(roles)}")

    sections = (
        ("Variables", [f"{k} = {v}" for k, v in sorted(resolved.variables.items())]),
        ("Dotfiles", [f"{d.declared_source} → {d.target}" for d in resolved.dotfiles]),
        ("Packages", [f"{p.name} ({p.kind.value})" for p in resolved.packages]),
        ("Hooks", [h.display_name for h in resolved.hooks]),
    )
    for title, lines in sections:
        console.print()
        console.print(f"[bold]{title}:[/]")
        if not lines:
            console.print("  [bright_black](none)[/]")
        for line in lines:
            console.print(f"  {escape(line)}")


# ── Render ───────────────────────────────────────────────────────────


@main.command()
@click.argument("template", type=click.Path(path_type=Path))
@click.pass_obj
def render(opts: Options, template: Path):
    """Preview TEMPLATE rendered with the selected host's variables and roles."""
    from mimic.templates import TemplateRenderer

    try:
        _, resolved = _resolve(opts)
        rendered = TemplateRenderer().render_file(template, resolved.variables, resolved.host)
    except MimicError as e:
        _fatal(e)

    click.echo(rendered, nl=False)


if __name__ == "__main__":
    main()
