"""Tests for path expansion and canonicalization."""

import os
import tempfile
from pathlib import Path

import pytest

from mimic.errors import ConfigError
from mimic.utils.paths import canonicalize, expand_path, expand_str


def test_expand_tilde(home):
    assert expand_str("~/test") == f"{home}/test"
    assert expand_str("~") == str(home)


def test_tilde_only_expanded_at_start(home):
    assert expand_str("/tmp/~/x") == "/tmp/~/x"


def test_expand_env_var(monkeypatch):
    monkeypatch.setenv("MIMIC_TEST_VAR", "hello")
    assert expand_str("$MIMIC_TEST_VAR/world") == "hello/world"
    assert expand_str("${MIMIC_TEST_VAR}/path") == "hello/path"


def test_missing_env_var_is_config_error(monkeypatch):
    monkeypatch.delenv("MIMIC_NONEXISTENT_VAR_12345", raising=False)
    with pytest.raises(ConfigError, match="MIMIC_NONEXISTENT_VAR_12345"):
        expand_str("$MIMIC_NONEXISTENT_VAR_12345/x")


def test_lone_dollar_is_kept():
    assert expand_str("price$") == "price$"
    assert expand_str("a/$-b") == "a/$-b"


def test_expand_path_anchors_relative_paths():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = expand_path("dotfiles/zshrc", base_dir=Path(tmpdir))
        assert result == Path(tmpdir) / "dotfiles" / "zshrc"
        assert result.is_absolute()


def test_expand_path_does_not_follow_symlinks():
    with tempfile.TemporaryDirectory() as tmpdir:
        real = Path(tmpdir) / "real"
        real.write_text("x")
        link = Path(tmpdir) / "link"
        os.symlink(real, link)
        assert expand_path(str(link)) == link


def test_canonicalize_dangling_returns_none():
    with tempfile.TemporaryDirectory() as tmpdir:
        link = Path(tmpdir) / "dangling"
        os.symlink(Path(tmpdir) / "nowhere", link)
        assert canonicalize(link) is None
        assert canonicalize(Path(tmpdir) / "missing") is None
        assert canonicalize(tmpdir) == Path(tmpdir).resolve()
