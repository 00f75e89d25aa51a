import json
import os
import threading
import time

import pytest

from netclient.lockfile import LockTimeoutError, is_pid_dead, lock, locked, unlock

# Above the largest pid the kernel will hand out.
DEAD_PID = 2**22 + 1


def test_is_pid_dead_for_own_process():
    assert is_pid_dead(os.getpid()) is False


def test_is_pid_dead_for_unused_pid():
    assert is_pid_dead(DEAD_PID) is True


def test_lock_writes_own_pid(tmp_path):
    path = tmp_path / "config.lck"
    lock(path, timeout=1.0)
    assert json.loads(path.read_text()) == os.getpid()


def test_unlock_removes_own_lock(tmp_path):
    path = tmp_path / "config.lck"
    lock(path, timeout=1.0)
    unlock(path, timeout=1.0)
    assert not path.exists()


def test_unlock_missing_file_is_no_error(tmp_path):
    path = tmp_path / "absent.lck"
    unlock(path, timeout=0.2)
    assert not path.exists()


def test_lock_replaces_stale_lock(tmp_path):
    path = tmp_path / "config.lck"
    path.write_text(json.dumps(DEAD_PID))
    lock(path, timeout=2.0)
    assert json.loads(path.read_text()) == os.getpid()


@pytest.mark.parametrize("content", ["", "not json", "true", '"123"'])
def test_lock_replaces_malformed_lock(tmp_path, content):
    path = tmp_path / "config.lck"
    path.write_text(content)
    lock(path, timeout=2.0)
    assert json.loads(path.read_text()) == os.getpid()


def test_lock_times_out_when_held_by_live_process(tmp_path):
    path = tmp_path / "config.lck"
    path.write_text(json.dumps(os.getppid()))
    start = time.monotonic()
    with pytest.raises(LockTimeoutError):
        lock(path, timeout=0.3)
    assert time.monotonic() - start >= 0.3
    assert json.loads(path.read_text()) == os.getppid()


def test_unlock_times_out_when_held_by_live_process(tmp_path):
    path = tmp_path / "config.lck"
    path.write_text(json.dumps(os.getppid()))
    with pytest.raises(LockTimeoutError) as info:
        unlock(path, timeout=0.2)
    assert info.value.lockfile == path
    assert path.exists()


def test_unlock_removes_lock_of_dead_process(tmp_path):
    path = tmp_path / "config.lck"
    path.write_text(json.dumps(DEAD_PID))
    unlock(path, timeout=2.0)
    assert not path.exists()


def test_locked_context_manager(tmp_path):
    path = tmp_path / "config.lck"
    with locked(path, timeout=1.0) as held:
        assert held == path
        assert json.loads(path.read_text()) == os.getpid()
    assert not path.exists()


def test_locked_releases_on_error(tmp_path):
    path = tmp_path / "config.lck"
    with pytest.raises(RuntimeError):
        with locked(path, timeout=1.0):
            raise RuntimeError("boom")
    assert not path.exists()


def test_lock_serialises_threads_after_release(tmp_path):
    path = tmp_path / "config.lck"
    lock(path, timeout=1.0)
    released = threading.Event()

    def release_later():
        time.sleep(0.2)
        unlock(path, timeout=1.0)
        released.set()

    worker = threading.Thread(target=release_later)
    worker.start()
    lock(path, timeout=3.0)
    worker.join()
    assert released.is_set()
    assert json.loads(path.read_text()) == os.getpid()