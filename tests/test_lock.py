"""Tests for the advisory run lock."""

import os

import pytest

from archstrap.core.exceptions import AlreadyRunningError
from archstrap.core.lock import RunLock, default_lock_path


class TestRunLock:
    def test_default_path_uses_runtime_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
        assert default_lock_path() == tmp_path / "archstrap.lock"

    def test_default_path_without_runtime_dir(self, monkeypatch):
        monkeypatch.delenv("XDG_RUNTIME_DIR")
        assert default_lock_path().name == f"archstrap-{os.getuid()}.lock"

    def test_acquire_writes_pid(self, tmp_path):
        path = tmp_path / "run.lock"
        with RunLock(path) as lock:
            assert lock.held
            assert path.read_text() == f"pid={os.getpid()}\n"
        assert not lock.held

    def test_second_holder_fails_fast(self, tmp_path):
        path = tmp_path / "run.lock"
        with RunLock(path):
            with pytest.raises(AlreadyRunningError) as exc_info:
                RunLock(path).acquire()
        assert exc_info.value.lock_path == str(path)
        assert f"pid={os.getpid()}" in str(exc_info.value)

    def test_reacquire_after_release(self, tmp_path):
        path = tmp_path / "run.lock"
        first = RunLock(path)
        first.acquire()
        first.release()
        second = RunLock(path)
        second.acquire()
        assert second.held
        second.release()

    def test_release_is_idempotent(self, tmp_path):
        lock = RunLock(tmp_path / "run.lock")
        lock.release()
        lock.acquire()
        lock.release()
        lock.release()
        assert not lock.held
