"""
Single-instance guard based on a PID file.
"""
import os
from pathlib import Path

from stackguard.utils import get_logger

logger = get_logger(__name__)


class AlreadyRunning(Exception):
    """Another live process holds the PID file."""


def _pid_alive(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to another user
        return True
    return True


class PidFile:
    """PID file at ``<directory>/<name>.pid``; usable as a context manager."""

    def __init__(self, directory, name='stackguard'):
        self.path = Path(directory) / f"{name}.pid"
        self._acquired = False

    def acquire(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            existing = int(self.path.read_text().strip())
        except FileNotFoundError:
            existing = None
        except (OSError, ValueError):
            existing = None
            logger.debug("Ignoring unreadable PID file %s", self.path)

        if existing and existing != os.getpid() and _pid_alive(existing):
            raise AlreadyRunning(f"another instance is running (PID: {existing})")
        if existing:
            logger.info("Removing stale PID file %s (PID %s)", self.path, existing)

        self.path.write_text(str(os.getpid()))
        self._acquired = True
        return self

    def release(self):
        if not self._acquired:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        self._acquired = False

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
