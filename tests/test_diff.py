"""Tests for the diff engine."""

import os

from mimic.config.models import ActiveDotfile, ActivePackage, HostContext, ResolvedConfig
from mimic.engine.diff import ChangeKind, DiffEngine, DotfileStatus
from mimic.templates import TemplateRenderer


def _resolved(dotfiles=(), packages=()):
    return ResolvedConfig(host=HostContext(name="test"), dotfiles=list(dotfiles), packages=list(packages))


def _dotfile(repo, home, name, target=None):
    return ActiveDotfile(
        source=repo / "dotfiles" / name,
        target=home / (target or f".{name}"),
        declared_source=f"dotfiles/{name}",
    )


def test_missing_target_is_add(home, dotfiles_repo, packages):
    change = DiffEngine(packages).diff_dotfile(_dotfile(dotfiles_repo, home, "zshrc"))
    assert change.kind == ChangeKind.ADD
    assert change.needs_apply


def test_correct_symlink_is_already_correct(home, dotfiles_repo, packages):
    dotfile = _dotfile(dotfiles_repo, home, "zshrc")
    os.symlink(dotfile.source, dotfile.target)
    assert DiffEngine(packages).diff_dotfile(dotfile).kind == ChangeKind.ALREADY_CORRECT


def test_relative_symlink_to_source_is_already_correct(home, dotfiles_repo, packages):
    dotfile = _dotfile(dotfiles_repo, home, "zshrc")
    os.symlink(os.path.relpath(dotfile.source, home), dotfile.target)
    assert DiffEngine(packages).diff_dotfile(dotfile).kind == ChangeKind.ALREADY_CORRECT


def test_regular_file_is_modify_not_a_symlink(home, dotfiles_repo, packages):
    dotfile = _dotfile(dotfiles_repo, home, "vimrc")
    dotfile.target.write_text("my own vimrc\n")

    change = DiffEngine(packages).diff_dotfile(dotfile)
    assert change.kind == ChangeKind.MODIFY
    assert change.reason == "not a symlink"


def test_symlink_elsewhere_is_modify_wrong_target(home, dotfiles_repo, packages):
    dotfile = _dotfile(dotfiles_repo, home, "zshrc")
    other = home / "other_zshrc"
    other.write_text("")
    os.symlink(other, dotfile.target)

    engine = DiffEngine(packages)
    assert engine.probe_dotfile(dotfile).status == DotfileStatus.WRONG_TARGET
    change = engine.diff_dotfile(dotfile)
    assert change.kind == ChangeKind.MODIFY
    assert change.reason == f"wrong target: {other}"


def test_dangling_symlink_at_target_is_wrong_target(home, dotfiles_repo, packages):
    dotfile = _dotfile(dotfiles_repo, home, "zshrc")
    os.symlink(home / "gone", dotfile.target)
    change = DiffEngine(packages).diff_dotfile(dotfile)
    assert change.kind == ChangeKind.MODIFY
    assert "wrong target" in change.reason


def test_missing_source_is_modify_not_abort(home, dotfiles_repo, packages):
    broken = _dotfile(dotfiles_repo, home, "does_not_exist")
    good = _dotfile(dotfiles_repo, home, "zshrc")

    changes = DiffEngine(packages).diff(_resolved([broken, good]))
    assert changes[0].kind == ChangeKind.MODIFY
    assert "source does not exist" in changes[0].reason
    assert changes[1].kind == ChangeKind.ADD


def test_packages_installed_or_missing(fake_packages_cls):
    packages = fake_packages_cls(installed={"git"})
    changes = DiffEngine(packages).diff(
        _resolved(packages=[ActivePackage(name="git"), ActivePackage(name="ripgrep")])
    )
    assert [c.kind for c in changes] == [ChangeKind.ALREADY_CORRECT, ChangeKind.ADD]
    assert changes[0].description == "brew package: git"


def test_package_probe_failure_is_reported_per_resource(fake_packages_cls):
    packages = fake_packages_cls(fail_probe={"broken"})
    changes = DiffEngine(packages).diff(
        _resolved(packages=[ActivePackage(name="broken"), ActivePackage(name="jq")])
    )
    assert changes[0].kind == ChangeKind.PROBE_FAILED
    assert "broken" in changes[0].reason
    assert changes[1].kind == ChangeKind.ADD


def test_diff_is_exhaustive_and_ordered(home, dotfiles_repo, fake_packages_cls):
    zshrc = _dotfile(dotfiles_repo, home, "zshrc")
    vimrc = _dotfile(dotfiles_repo, home, "vimrc")
    gitconfig = _dotfile(dotfiles_repo, home, "gitconfig")
    os.symlink(vimrc.source, vimrc.target)
    packages = fake_packages_cls(installed={"git"})

    changes = DiffEngine(packages).diff(
        _resolved([zshrc, vimrc, gitconfig], [ActivePackage(name="git"), ActivePackage(name="jq")])
    )

    assert [c.resource for c in changes] == [zshrc, vimrc, gitconfig, ActivePackage(name="git"), ActivePackage(name="jq")]
    assert [c.kind for c in changes] == [
        ChangeKind.ADD,
        ChangeKind.ALREADY_CORRECT,
        ChangeKind.ADD,
        ChangeKind.ALREADY_CORRECT,
        ChangeKind.ADD,
    ]


def test_diff_is_idempotent(home, dotfiles_repo, fake_packages_cls):
    zshrc = _dotfile(dotfiles_repo, home, "zshrc")
    vimrc = _dotfile(dotfiles_repo, home, "vimrc")
    vimrc.target.write_text("local")
    engine = DiffEngine(fake_packages_cls(installed={"git"}))
    resolved = _resolved([zshrc, vimrc], [ActivePackage(name="git"), ActivePackage(name="jq")])

    assert engine.diff(resolved) == engine.diff(resolved)


def test_template_compared_against_rendered_path(home, dotfiles_repo, packages, tmp_path):
    source = dotfiles_repo / "dotfiles" / "gitconfig.tmpl"
    source.write_text("email = {{ email }}\n")
    renderer = TemplateRenderer(tmp_path / "rendered")
    dotfile = ActiveDotfile(source=source, target=home / ".gitconfig", template=True)

    rendered = renderer.rendered_path(source)
    rendered.parent.mkdir(parents=True)
    rendered.write_text("email = me\n")
    os.symlink(rendered, dotfile.target)

    engine = DiffEngine(packages, renderer=renderer)
    assert engine.link_source(dotfile) == tmp_path / "rendered" / "gitconfig"
    assert engine.diff_dotfile(dotfile).kind == ChangeKind.ALREADY_CORRECT
