"""Tests for the state record and its atomic persistence."""

import json
import os
import tempfile
from pathlib import Path

import pytest

from mimic.errors import StateError
from mimic.state.store import DotfileState, PackageState, StateRecord, StateStore


def _populated() -> StateRecord:
    state = StateRecord(applied_commit="abc123", active_host="laptop")
    state.record_dotfile(DotfileState(source="/repo/zshrc", target="/home/u/.zshrc"))
    state.record_dotfile(
        DotfileState(
            source="/repo/vimrc",
            target="/home/u/.vimrc",
            backup_path="/home/u/.vimrc.backup.20240506_070809",
        )
    )
    state.record_package(PackageState(name="git", manager="brew"))
    state.touch()
    return state


def test_load_missing_file_returns_empty_record():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = StateStore(Path(tmpdir) / "state.json")
        state = store.load()
        assert state.is_empty
        assert state.applied_commit is None
        assert not store.exists()


def test_save_and_load():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = StateStore(Path(tmpdir) / "nested" / "state.json")
        store.save(_populated())

        loaded = store.load()
        assert loaded.active_host == "laptop"
        assert loaded.applied_commit == "abc123"
        assert loaded.applied_at != ""
        assert [d.target for d in loaded.dotfiles] == ["/home/u/.zshrc", "/home/u/.vimrc"]
        assert loaded.dotfiles[0].backup_path is None
        assert loaded.dotfiles[1].backup_path == "/home/u/.vimrc.backup.20240506_070809"
        assert loaded.packages == [PackageState(name="git", manager="brew")]


def test_save_leaves_no_temp_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = StateStore(Path(tmpdir) / "state.json")
        store.save(_populated())
        store.save(StateRecord())
        assert sorted(p.name for p in Path(tmpdir).iterdir()) == ["state.json"]


def test_corrupt_state_is_state_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.json"
        path.write_text("{not json")
        with pytest.raises(StateError, match="Failed to read"):
            StateStore(path).load()

        path.write_text(json.dumps(["wrong", "shape"]))
        with pytest.raises(StateError, match="corrupt"):
            StateStore(path).load()

        path.write_text(json.dumps({"dotfiles": [{"target": "/x"}]}))
        with pytest.raises(StateError, match="corrupt"):
            StateStore(path).load()


def test_interrupted_before_rename_keeps_previous_file(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.json"
        store = StateStore(path)
        store.save(_populated())
        before = path.read_bytes()

        def crash(src, dst):
            raise OSError("simulated crash before rename")

        monkeypatch.setattr(os, "replace", crash)
        with pytest.raises(StateError, match="simulated crash"):
            store.save(StateRecord())

        assert path.read_bytes() == before
        assert len(store.load().dotfiles) == 2
        assert [p.name for p in Path(tmpdir).iterdir()] == ["state.json"]


def test_interrupted_after_rename_keeps_new_file(monkeypatch):
    import mimic.state.store as store_module

    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.json"
        store = StateStore(path)
        store.save(_populated())

        def crash(directory):
            raise KeyboardInterrupt

        monkeypatch.setattr(store_module, "_fsync_dir", crash)
        with pytest.raises(KeyboardInterrupt):
            store.save(StateRecord(active_host="desktop"))

        loaded = store.load()
        assert loaded.active_host == "desktop"
        assert loaded.is_empty


def test_record_dotfile_replaces_same_target():
    state = StateRecord()
    state.record_dotfile(DotfileState(source="/a", target="/t", backup_path="/t.backup.1"))
    state.record_dotfile(DotfileState(source="/b", target="/t"))
    assert len(state.dotfiles) == 1
    assert state.find_dotfile("/t").source == "/b"


def test_record_package_is_additive():
    state = StateRecord()
    assert state.record_package(PackageState(name="git"))
    assert not state.record_package(PackageState(name="git"))
    assert state.record_package(PackageState(name="git", manager="apt"))
    assert len(state.packages) == 2


def test_clear_empties_record():
    state = _populated()
    state.clear()
    assert state.is_empty
    assert state.applied_commit is None
