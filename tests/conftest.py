"""Shared fakes for the package manager, clock, and home directory."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from mimic.config.models import PackageKind
from mimic.errors import InstallError, ProbeError


class FakePackageManager:
    """In-memory stand-in for Homebrew."""

    manager = "brew"

    def __init__(self, installed=(), fail_install=(), fail_probe=()):
        self.installed = set(installed)
        self.fail_install = set(fail_install)
        self.fail_probe = set(fail_probe)
        self.install_calls = []
        self.probe_calls = []

    def is_installed(self, name, kind=PackageKind.FORMULA):
        self.probe_calls.append(name)
        if name in self.fail_probe:
            raise ProbeError(f"brew list failed for {name}")
        return name in self.installed

    def install(self, name, kind=PackageKind.FORMULA):
        self.install_calls.append(name)
        if name in self.fail_install:
            raise InstallError.command_failed(f"brew install {name}", 1, "Error: No formula found")
        self.installed.add(name)


class FixedClock:
    def __init__(self, moment=datetime(2024, 5, 6, 7, 8, 9)):
        self.moment = moment

    def local_now(self):
        return self.moment

    def utc_now(self):
        return self.moment.replace(tzinfo=timezone.utc)


@pytest.fixture
def home(tmp_path, monkeypatch) -> Path:
    """A throwaway home directory; ``~`` expands here."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    return home_dir


@pytest.fixture
def dotfiles_repo(tmp_path) -> Path:
    """A dotfiles directory with a few source files."""
    repo = tmp_path / "repo"
    (repo / "dotfiles").mkdir(parents=True)
    (repo / "dotfiles" / "zshrc").write_text("export EDITOR=vim\n")
    (repo / "dotfiles" / "vimrc").write_text("set number\n")
    (repo / "dotfiles" / "gitconfig").write_text("[user]\n  name = Test\n")
    return repo


@pytest.fixture
def packages():
    return FakePackageManager()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def fake_packages_cls():
    return FakePackageManager
