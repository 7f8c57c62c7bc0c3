import logging
import os
import shutil
import time
from pathlib import Path

from .constants import APP_NAME, STALE_LOCK_SECONDS

logger = logging.getLogger(APP_NAME)


class ExecutionLock:
    """A crash-tolerant mutex backed by an atomically created directory.

    The directory existing means another agent is running or died mid-run.
    A lock older than `stale_after` seconds is presumed abandoned and purged.

    Attributes:
        path (Path): The lock directory.
        stale_after (int): Seconds after which an existing lock is reclaimed.
        held (bool): Whether this instance currently owns the lock.
    """

    def __init__(self, path: Path, stale_after: int = STALE_LOCK_SECONDS):
        self.path = path
        self.stale_after = stale_after
        self.held = False

    def _try_create(self) -> bool:
        try:
            self.path.mkdir()
        except FileExistsError:
            return False
        self.held = True
        try:
            (self.path / "owner").write_text(f"{os.getpid()} {int(time.time())}\n")
        except OSError as e:
            logger.debug(f"Could not record lock owner in {self.path}: {e}")
        return True

    @staticmethod
    def _age_of(path: Path) -> float | None:
        try:
            return time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return None

    def age(self) -> float | None:
        """Seconds since the lock was created, or None if it no longer exists."""
        return self._age_of(self.path)

    def _reclaim(self, age: float) -> bool:
        """Moves a stale lock aside, then removes it if it is still stale.

        Renaming is atomic, so only one contender can take a given directory.
        A contender that re-created the lock between our age check and the
        rename gets its directory back.

        Returns:
            bool: False if the lock turned out to be live.
        """
        tombstone = self.path.with_name(
            f"{self.path.name}.stale.{os.getpid()}.{time.time_ns()}"
        )
        try:
            os.rename(self.path, tombstone)
        except FileNotFoundError:
            return True

        if (self._age_of(tombstone) or 0) <= self.stale_after:
            try:
                os.rename(tombstone, self.path)
            except OSError as e:
                logger.warning(f"Could not restore live lock {self.path}: {e}")
                shutil.rmtree(tombstone, ignore_errors=True)
            return False

        logger.warning(f"Removing stale lock {self.path} ({age / 3600:.1f}h old).")
        shutil.rmtree(tombstone, ignore_errors=True)
        return True

    def acquire(self) -> bool:
        """Attempts to take the lock, reclaiming it once if it looks abandoned.

        Returns:
            bool: True if the lock is now held by this instance, False if a
            live instance holds it.

        Raises:
            OSError: If the lock directory cannot be created for reasons other
                than contention (e.g. permissions).
        """
        if self._try_create():
            return True

        age = self.age()
        if age is not None:
            if age <= self.stale_after:
                return False
            if not self._reclaim(age):
                return False

        # Single retry: the holder finished meanwhile, or we purged a stale lock.
        return self._try_create()

    def release(self) -> None:
        """Removes the lock directory if this instance holds it. Idempotent."""
        if not self.held:
            return
        self.held = False
        shutil.rmtree(self.path, ignore_errors=True)
