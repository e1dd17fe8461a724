"""Single-instance lock for the vidkeep daemon."""

import fcntl
import os
from pathlib import Path
from typing import Optional


class DaemonAlreadyRunning(RuntimeError):
    """Another daemon process holds the lock."""


class DaemonLock:
    """Prevents two daemons from working the same catalog via an fcntl lock.

    Two daemons would each reset the other's in-flight work on start-up.
    """

    def __init__(self, pid_file: Optional[Path] = None):
        if pid_file is None:
            state_home = os.environ.get("XDG_STATE_HOME", str(Path.home() / ".local/state"))
            pid_file = Path(state_home) / "vidkeep" / "daemon.pid"
        self.pid_file = pid_file
        self._handle = None

    def __enter__(self) -> "DaemonLock":
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.pid_file, "a")
        try:
            fcntl.flock(self._handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            self._handle.close()
            self._handle = None
            raise DaemonAlreadyRunning(f"Daemon already running (lock: {self.pid_file})")
        self._handle.truncate(0)
        self._handle.write(str(os.getpid()))
        self._handle.flush()
        return self

    def __exit__(self, *_) -> None:
        if self._handle is not None:
            fcntl.flock(self._handle, fcntl.LOCK_UN)
            self._handle.close()
            self._handle = None


def acquire_daemon_lock(pid_file: Optional[Path] = None) -> DaemonLock:
    """Convenience function for use with 'with' statement."""
    return DaemonLock(pid_file)
