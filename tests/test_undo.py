"""Tests for undo."""

import os

from mimic.engine.undo import UndoEngine, UndoStatus
from mimic.state.store import DotfileState, PackageState, StateRecord, StateStore


def _store_with(tmp_path, *dotfiles, packages=()):
    store = StateStore(tmp_path / "state.json")
    store.save(StateRecord(dotfiles=list(dotfiles), packages=list(packages), active_host="laptop"))
    return store


def test_removes_symlink_without_backup(home, dotfiles_repo, clock, tmp_path):
    source = dotfiles_repo / "dotfiles" / "zshrc"
    target = home / ".zshrc"
    os.symlink(source, target)
    store = _store_with(tmp_path, DotfileState(source=str(source), target=str(target)))

    result = UndoEngine(store, clock=clock).run()

    assert not os.path.lexists(target)
    assert [o.status for o in result.outcomes] == [UndoStatus.REMOVED]
    assert result.symlinks_removed == 1
    assert result.exit_code == 0
    assert StateStore(tmp_path / "state.json").load().is_empty


def test_restores_backup(home, dotfiles_repo, clock, tmp_path):
    source = dotfiles_repo / "dotfiles" / "vimrc"
    target = home / ".vimrc"
    backup = home / ".vimrc.backup.20240506_070809"
    backup.write_text("original content\n")
    os.symlink(source, target)
    store = _store_with(
        tmp_path, DotfileState(source=str(source), target=str(target), backup_path=str(backup))
    )

    result = UndoEngine(store, clock=clock).run()

    assert not target.is_symlink()
    assert target.read_text() == "original content\n"
    assert not backup.exists()
    assert result.backups_restored == 1


def test_missing_target_is_already_absent(home, dotfiles_repo, clock, tmp_path):
    store = _store_with(
        tmp_path, DotfileState(source=str(dotfiles_repo / "dotfiles" / "zshrc"), target=str(home / ".zshrc"))
    )
    result = UndoEngine(store, clock=clock).run()
    assert result.outcomes[0].status == UndoStatus.ALREADY_ABSENT
    assert result.exit_code == 0


def test_missing_backup_is_reported(home, dotfiles_repo, clock, tmp_path):
    source = dotfiles_repo / "dotfiles" / "vimrc"
    target = home / ".vimrc"
    os.symlink(source, target)
    store = _store_with(
        tmp_path,
        DotfileState(source=str(source), target=str(target), backup_path=str(home / ".vimrc.backup.gone")),
    )

    result = UndoEngine(store, clock=clock).run()

    assert not os.path.lexists(target)
    assert result.outcomes[0].status == UndoStatus.REMOVED
    assert "backup not found" in result.outcomes[0].detail


def test_replaced_target_is_left_untouched(home, dotfiles_repo, clock, tmp_path):
    target = home / ".zshrc"
    target.write_text("user edited this")
    backup = home / ".zshrc.backup.20240506_070809"
    backup.write_text("older")
    store = _store_with(
        tmp_path,
        DotfileState(
            source=str(dotfiles_repo / "dotfiles" / "zshrc"), target=str(target), backup_path=str(backup)
        ),
    )

    result = UndoEngine(store, clock=clock).run()

    assert target.read_text() == "user edited this"
    assert backup.read_text() == "older"
    assert result.outcomes[0].status == UndoStatus.SKIPPED
    assert "not a symlink" in result.outcomes[0].detail
    assert str(backup) in result.outcomes[0].detail
    assert result.exit_code == 1


def test_repointed_symlink_is_left_untouched(home, dotfiles_repo, clock, tmp_path):
    target = home / ".zshrc"
    os.symlink(dotfiles_repo / "dotfiles" / "vimrc", target)
    store = _store_with(
        tmp_path, DotfileState(source=str(dotfiles_repo / "dotfiles" / "zshrc"), target=str(target))
    )

    result = UndoEngine(store, clock=clock).run()

    assert target.is_symlink()
    assert result.outcomes[0].status == UndoStatus.SKIPPED
    assert "points to" in result.outcomes[0].detail


def test_packages_are_dropped_not_uninstalled(home, dotfiles_repo, clock, tmp_path):
    store = _store_with(tmp_path, packages=[PackageState("git"), PackageState("jq")])

    result = UndoEngine(store, clock=clock).run()

    assert [p.name for p in result.dropped_packages] == ["git", "jq"]
    state = StateStore(tmp_path / "state.json").load()
    assert state.packages == []
    assert state.active_host is None


def test_nothing_to_undo(tmp_path, clock):
    store = StateStore(tmp_path / "state.json")
    result = UndoEngine(store, clock=clock).run()
    assert result.nothing_to_undo
    assert not store.exists()


def test_outcomes_follow_record_order(home, dotfiles_repo, clock, tmp_path):
    entries = []
    for name in ("zshrc", "vimrc", "gitconfig"):
        source = dotfiles_repo / "dotfiles" / name
        os.symlink(source, home / f".{name}")
        entries.append(DotfileState(source=str(source), target=str(home / f".{name}")))
    store = _store_with(tmp_path, *entries)

    result = UndoEngine(store, clock=clock).run()

    assert [o.target for o in result.outcomes] == [e.target for e in entries]
    assert result.symlinks_removed == 3


def test_rendered_file_is_cleaned_up(home, tmp_path, clock):
    rendered = tmp_path / "rendered" / "gitconfig"
    rendered.parent.mkdir()
    rendered.write_text("rendered")
    target = home / ".gitconfig"
    os.symlink(rendered, target)
    store = _store_with(
        tmp_path,
        DotfileState(
            source=str(tmp_path / "gitconfig.tmpl"), target=str(target), rendered_path=str(rendered)
        ),
    )

    result = UndoEngine(store, clock=clock).run()

    assert result.outcomes[0].status == UndoStatus.REMOVED
    assert not rendered.exists()


def test_undo_after_apply_restores_original_layout(home, dotfiles_repo, packages, clock, tmp_path):
    from mimic.config.loader import load_config
    from mimic.config.resolver import resolve
    from mimic.engine.apply import ApplyTransaction
    from mimic.engine.diff import DiffEngine

    (home / ".vimrc").write_text("original content\n")
    config_path = dotfiles_repo / "mimic.toml"
    config_path.write_text(
        '[[dotfiles]]\nsource = "dotfiles/vimrc"\ntarget = "~/.vimrc"\n\n'
        '[[dotfiles]]\nsource = "dotfiles/zshrc"\ntarget = "~/.zshrc"\n\n'
        '[packages]\nbrew = ["git"]\n'
    )
    resolved = resolve(load_config(config_path))
    store = StateStore(tmp_path / "state.json")
    ApplyTransaction(store, packages, clock=clock).run(DiffEngine(packages).diff(resolved), resolved)

    result = UndoEngine(store, clock=clock).run()

    assert sorted(p.name for p in home.iterdir()) == [".vimrc"]
    assert (home / ".vimrc").read_text() == "original content\n"
    assert result.backups_restored == 1
    assert packages.installed == {"git"}
