"""
Cross-process mutex guarding a log directory.

All mutating operations on the log are serialized through an advisory lock
on ``<dir>/events.lock``. The lock is held through an OS primitive
(``flock`` on POSIX, ``msvcrt.locking`` on Windows), so it is released by
the kernel when the holding process dies and never needs to be reclaimed
by age.
"""

import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from eventbus.errors import LockTimeoutError
from eventbus.utils.logging import get_logger

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = get_logger(__name__)

LOCK_FILE_NAME = "events.lock"


def _try_lock(fd: int) -> bool:
    """Try to take an exclusive lock without blocking."""
    try:
        if sys.platform == "win32":
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except (BlockingIOError, PermissionError):
        return False
    except OSError:
        # msvcrt reports contention as EDEADLOCK
        if sys.platform == "win32":
            return False
        raise
    return True


def _unlock(fd: int) -> None:
    """Release a lock taken by ``_try_lock``."""
    if sys.platform == "win32":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


class ProcessMutex:
    """
    Exclusive lock shared by every process using one log directory.

    Each ``acquire`` opens its own handle on the lock file, so independent
    acquirers in the same process (threads, separate bus instances) exclude
    each other just like separate processes do. The lock is not reentrant.

    Attributes:
        directory: Log directory holding the lock file
        attempts: Maximum number of lock attempts
        retry_interval: Seconds to sleep between attempts
    """

    def __init__(
        self,
        directory: Path,
        attempts: int = 50,
        retry_interval: float = 0.1,
    ):
        """
        Initialize the mutex.

        Args:
            directory: Log directory
            attempts: Number of attempts before giving up
            retry_interval: Delay between attempts in seconds

        Raises:
            ValueError: If attempts is less than 1
        """
        if attempts < 1:
            raise ValueError(f"Attempts must be at least 1, got {attempts}")

        self.directory = Path(directory)
        self.attempts = attempts
        self.retry_interval = retry_interval
        self.path = self.directory / LOCK_FILE_NAME

    def acquire(self) -> Callable[[], None]:
        """
        Acquire the lock.

        Returns:
            Release function; calling it more than once is harmless

        Raises:
            LockTimeoutError: If the lock could not be taken within the budget
            OSError: If the lock file cannot be created
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)

        try:
            for attempt in range(1, self.attempts + 1):
                if _try_lock(fd):
                    break

                logger.debug(
                    "Lock busy, retrying",
                    path=str(self.path),
                    attempt=attempt,
                    holder_pid=self.holder_pid(),
                )
                if attempt < self.attempts:
                    time.sleep(self.retry_interval)
            else:
                logger.error(
                    "Lock acquisition timed out",
                    path=str(self.path),
                    attempts=self.attempts,
                    holder_pid=self.holder_pid(),
                )
                raise LockTimeoutError(
                    f"Failed to acquire lock {self.path} after {self.attempts} attempts"
                )

            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, str(os.getpid()).encode())
        except BaseException:
            os.close(fd)
            raise

        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            try:
                os.ftruncate(fd, 0)
                _unlock(fd)
            finally:
                os.close(fd)
            logger.debug("Released lock", path=str(self.path))

        logger.debug("Acquired lock", path=str(self.path), pid=os.getpid())
        return release

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold the lock for the duration of a ``with`` block."""
        release = self.acquire()
        try:
            yield
        finally:
            release()

    def holder_pid(self) -> Optional[int]:
        """
        Get the PID recorded by the current holder.

        Returns:
            PID, or None if the lock is free or the file is unreadable
        """
        try:
            content = self.path.read_text().strip()
        except OSError:
            return None

        try:
            return int(content)
        except ValueError:
            return None

    def __repr__(self) -> str:
        """String representation."""
        return f"ProcessMutex(path={str(self.path)!r}, attempts={self.attempts})"
