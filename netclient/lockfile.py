"""Pid-stamped lock files guarding access to configuration files."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Iterator, Optional, Union

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
_RETRY_INTERVAL = 0.1

PathLike = Union[str, "os.PathLike[str]"]


class LockTimeoutError(TimeoutError):
    """Raised when a lock file cannot be obtained or released in time."""

    def __init__(self, lockfile: PathLike) -> None:
        super().__init__(f"TIMEOUT: {lockfile}")
        self.lockfile = Path(lockfile)


def is_pid_dead(pid: int) -> bool:
    """Return True when no process with the given pid is running."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    except (OverflowError, ValueError):
        return True
    except OSError:
        return False
    return False


def _parse_owner(content: bytes) -> Optional[int]:
    try:
        owner = json.loads(content)
    except ValueError:
        return None
    if type(owner) is not int:
        return None
    return owner


def _remove(path: Path, debug: bool) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as err:
        if debug:
            log.debug("error removing lockfile %s: %s", path, err)


def _clear_stale(path: Path, debug: bool) -> None:
    try:
        content = path.read_bytes()
    except OSError:
        content = b""
    if not content:
        _remove(path, debug)
        return
    owner = _parse_owner(content)
    if owner is None or is_pid_dead(owner):
        _remove(path, debug)


def lock(lockfile: PathLike, timeout: float = DEFAULT_TIMEOUT, debug: bool = False) -> None:
    """Create the lock file holding this process's pid.

    A lock file that is empty, unreadable or owned by a dead process is
    removed. Raises LockTimeoutError when the lock is not obtained in time.
    """
    path = Path(lockfile)
    start = time.monotonic()
    pid = os.getpid()
    if debug:
        log.debug("lock try %s", path)
    while True:
        if path.exists():
            if debug:
                log.debug("lockfile %s exists", path)
            _clear_stale(path, debug)
        else:
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o777)
            except FileExistsError:
                pass
            except OSError as err:
                if debug:
                    log.debug("unable to write to lockfile: %s", err)
            else:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(json.dumps(pid))
                return
        if debug:
            log.debug("unable to get lock")
        if time.monotonic() - start > timeout:
            raise LockTimeoutError(path)
        time.sleep(_RETRY_INTERVAL)


def unlock(lockfile: PathLike, timeout: float = DEFAULT_TIMEOUT, debug: bool = False) -> None:
    """Remove the lock file if this process owns it or its owner is dead.

    A missing lock file counts as unlocked. Raises LockTimeoutError when the
    lock file is still held by another live process after the timeout.
    """
    path = Path(lockfile)
    start = time.monotonic()
    pid = os.getpid()
    if debug:
        log.debug("unlock try %s", path)
    while True:
        try:
            content = path.read_bytes()
        except FileNotFoundError:
            return
        owner = _parse_owner(content)
        if owner is None:
            if debug:
                log.debug("lockfile %s holds no pid", path)
        elif owner == pid:
            try:
                path.unlink()
            except FileNotFoundError:
                return
            except OSError as err:
                if debug:
                    log.debug("error removing lockfile: %s", err)
            else:
                return
        else:
            if debug:
                log.debug("lockfile %s owned by pid %d", path, owner)
            if is_pid_dead(owner):
                _remove(path, debug)
        if debug:
            log.debug("unable to unlock")
        if time.monotonic() - start > timeout:
            raise LockTimeoutError(path)
        time.sleep(_RETRY_INTERVAL)


@contextlib.contextmanager
def locked(
    lockfile: PathLike, timeout: float = DEFAULT_TIMEOUT, debug: bool = False
) -> Iterator[Path]:
    """Hold the lock file for the duration of the block."""
    lock(lockfile, timeout, debug)
    try:
        yield Path(lockfile)
    finally:
        unlock(lockfile, timeout, debug)