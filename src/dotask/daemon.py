"""Single-daemon enforcement and process detachment.

The daemon record is a file of raw native 32-bit PIDs. Every read-signal-
rewrite of it happens while holding an exclusive ``flock`` on a separate,
well-known lock file, so concurrent ``serve`` and ``die`` invocations cannot
interleave.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import signal
import struct
import sys
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

_PID = struct.Struct("=i")


class DaemonError(RuntimeError):
    """The lock or the daemon record could not be used."""


def _is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, but belongs to someone else
        return True
    return True


class DaemonController:
    def __init__(self, pid_file: str | Path, lock_file: str | Path):
        self.pid_file = Path(pid_file)
        self.lock_file = Path(lock_file)

    def _acquire(self):
        """Open and flock the lock file, retrying if it was replaced meanwhile.

        ``cleanup`` may unlink the file while we wait on it; a lock on an
        unlinked inode excludes nobody, so only a lock on the inode currently
        at the path counts.
        """
        while True:
            try:
                self.lock_file.parent.mkdir(parents=True, exist_ok=True)
                # "a" so every opener shares one inode; flock is per-inode
                lock = open(self.lock_file, "a")
            except OSError as e:
                raise DaemonError(f"can not open lock file {self.lock_file}: {e}") from e
            try:
                fcntl.flock(lock, fcntl.LOCK_EX)
                held = os.fstat(lock.fileno())
                try:
                    current = os.stat(self.lock_file)
                except FileNotFoundError:
                    current = None
            except OSError as e:
                lock.close()
                raise DaemonError(f"can not lock {self.lock_file}: {e}") from e
            if current is not None and (held.st_dev, held.st_ino) == (current.st_dev, current.st_ino):
                return lock
            logger.debug("Lock file %s was replaced while waiting, retrying", self.lock_file)
            lock.close()

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        lock = self._acquire()
        try:
            yield
        finally:
            lock.close()  # releases the flock

    def read_pids(self) -> list[int]:
        """PIDs in the record, oldest first. A missing file reads as empty."""
        try:
            data = self.pid_file.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise DaemonError(f"can not read daemon record {self.pid_file}: {e}") from e
        usable = len(data) - len(data) % _PID.size
        if usable != len(data):
            logger.warning("Ignoring %d trailing byte(s) in %s", len(data) - usable, self.pid_file)
        return [pid for (pid,) in _PID.iter_unpack(data[:usable])]

    def _write_pids(self, pids: list[int]) -> None:
        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.pid_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(b"".join(_PID.pack(pid) for pid in pids))
        except OSError as e:
            raise DaemonError(f"can not write daemon record {self.pid_file}: {e}") from e

    def _terminate_recorded(self) -> list[int]:
        me = os.getpid()
        signaled: list[int] = []
        for pid in self.read_pids():
            # kill(0) or kill(-1) would hit whole process groups
            if pid <= 0 or pid == me:
                continue
            if not _is_alive(pid):
                logger.debug("Recorded daemon %d is already gone", pid)
                continue
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                continue
            except PermissionError:
                logger.warning("Not allowed to signal recorded daemon %d", pid)
                continue
            logger.info("Sent SIGTERM to daemon %d", pid)
            signaled.append(pid)
        return signaled

    def claim(self, pid: int | None = None) -> list[int]:
        """Terminate any recorded daemon and record ``pid`` (default: ours).

        Returns the PIDs that were signaled.
        """
        pid = os.getpid() if pid is None else pid
        with self._locked():
            signaled = self._terminate_recorded()
            self._write_pids([pid])
        logger.info("Daemon record %s now holds %d", self.pid_file, pid)
        return signaled

    def stop(self) -> list[int]:
        """Terminate any recorded daemon and leave the record empty."""
        with self._locked():
            signaled = self._terminate_recorded()
            self._write_pids([])
        return signaled

    def release(self, pid: int | None = None) -> None:
        """Drop ``pid`` from the record; other entries are left alone."""
        pid = os.getpid() if pid is None else pid
        with self._locked():
            remaining = [p for p in self.read_pids() if p != pid]
            self._write_pids(remaining)

    def cleanup(self) -> None:
        """Remove the lock file. Only ``die`` does this.

        The unlink happens while holding the lock, and nothing else runs
        under it afterwards. Waiters queued on the old inode notice the
        replacement in ``_acquire`` and start over on the new file.
        """
        with self._locked():
            self.lock_file.unlink(missing_ok=True)


def daemonize() -> None:
    """Double fork so the survivor is reparented and has no controlling terminal.

    Only the grandchild returns; both parents exit immediately.
    """
    sys.stdout.flush()
    sys.stderr.flush()
    if os.fork() > 0:
        os._exit(0)
    os.setsid()
    if os.fork() > 0:
        os._exit(0)
    logger.info("Daemonized as %d", os.getpid())


def detach_stdio() -> None:
    """Point stdin, stdout and stderr at /dev/null."""
    sys.stdout.flush()
    sys.stderr.flush()
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)
