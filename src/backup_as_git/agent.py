"""The unattended agent that snapshots one backup target per invocation.

A scheduler (launchd, systemd or cron) runs the generated wrapper script on a
timer; the wrapper calls `main` with every parameter baked in. No state other
than the repository and the lock directory survives between runs.
"""

import atexit
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType

from .constants import APP_NAME, COMMIT_MESSAGE, MAX_LOG_SIZE, STALE_LOCK_SECONDS
from .errors import BackupEnvironmentError, VcsOperationError
from .git_wrapper import GitRepo
from .lock import ExecutionLock
from .target import BackupTarget

logger = logging.getLogger(APP_NAME)

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT)


def _exit_on_signal(signum: int, _frame: FrameType | None) -> None:
    raise SystemExit(128 + signum)


def install_signal_handlers() -> None:
    """Turns termination signals into SystemExit so cleanup handlers still run."""
    for sig in TERMINATION_SIGNALS:
        signal.signal(sig, _exit_on_signal)


def _commit_changes(repo: GitRepo, message: str) -> int:
    """Stages and commits every pending change in the work tree.

    Returns:
        int: 0 when the tree was clean or the commit succeeded, 1 otherwise.
    """
    try:
        changes = repo.status_porcelain()
    except VcsOperationError as e:
        logger.error(f"Error: git status failed. {e.stderr or e}")
        return 1

    if not changes:
        logger.debug(f"No changes in {repo.work_tree}.")
        return 0

    try:
        repo.add_all()
    except VcsOperationError as e:
        logger.error(f"Error: git add failed. {e.stderr or e}")
        return 1

    try:
        repo.commit(message)
    except VcsOperationError as e:
        logger.error(f"Error: git commit failed. {e.stderr or e}")
        return 1

    logger.info(f"Committed {len(changes)} change(s) in {repo.work_tree}.")
    return 0


def run_backup(
    target: BackupTarget,
    stale_after: int = STALE_LOCK_SECONDS,
    message: str = COMMIT_MESSAGE,
) -> int:
    """Performs a single backup attempt for `target`.

    Steps:
    1. Preflight: the repository metadata and the work directory must exist.
    2. Takes the execution lock; a live holder means a silent, successful exit.
    3. Commits pending changes, if any.
    4. Releases the lock on every path out of this function.

    Args:
        target (BackupTarget): The directory and repository to snapshot.
        stale_after (int, optional): Seconds before a held lock is reclaimed.
        message (str, optional): The commit message.

    Returns:
        int: The process exit code (0 success or no-op, 1 failure).
    """
    try:
        repo = GitRepo(target.git_dir, target.work_dir, target.git_binary)
        if not target.work_dir.is_dir():
            raise BackupEnvironmentError(f"Work directory missing: {target.work_dir}")
    except BackupEnvironmentError as e:
        logger.error(f"Error: {e}")
        return 1

    lock = ExecutionLock(target.lock_dir, stale_after)
    # Registered first so a signal landing right after mkdir still cleans up.
    atexit.register(lock.release)
    try:
        try:
            if not lock.acquire():
                logger.debug(f"Lock held at {lock.path}; another run is active.")
                return 0
        except OSError as e:
            logger.error(f"Error: could not create lock {lock.path}: {e}")
            return 1

        return _commit_changes(repo, message)
    finally:
        lock.release()
        atexit.unregister(lock.release)


def setup_logging(error_log: Path, max_log_size: int = MAX_LOG_SIZE) -> None:
    """Configures the logging subsystem for an unattended run.

    Warnings and errors are appended to the per-target error log (rotated);
    everything from INFO up also goes to stderr, which the scheduler captures.

    Args:
        error_log (Path): The per-target error log file.
        max_log_size (int, optional): Bytes before the log is rotated.
    """
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    try:
        error_log.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            error_log,
            maxBytes=max_log_size,
            backupCount=5,
        )
    except OSError as e:
        logger.warning(f"Could not open error log {error_log}: {e}")
        return
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def main(
    target: BackupTarget,
    error_log: Path,
    stale_after: int = STALE_LOCK_SECONDS,
    message: str = COMMIT_MESSAGE,
    max_log_size: int = MAX_LOG_SIZE,
) -> int:
    """Entry point used by generated wrapper scripts.

    Args:
        target (BackupTarget): The baked-in backup target.
        error_log (Path): Where failures are recorded.
        stale_after (int, optional): Seconds before a held lock is reclaimed.
        message (str, optional): The commit message.
        max_log_size (int, optional): Bytes before the error log is rotated.

    Returns:
        int: The process exit code.
    """
    setup_logging(error_log, max_log_size)
    install_signal_handlers()
    try:
        return run_backup(target, stale_after=stale_after, message=message)
    except Exception:
        logger.exception(f"CRITICAL {target.name}: unexpected failure")
        return 1
