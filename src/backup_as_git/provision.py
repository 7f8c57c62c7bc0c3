import logging
import os
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

from .config import Config
from .constants import AGENT_DIR, APP_NAME, STATE_DIR
from .errors import BackupEnvironmentError
from .exclude import merge_excludes
from .git_wrapper import GitRepo
from .scheduler import ScheduleRegistration, SchedulerStrategy, get_scheduler
from .target import BackupTarget

logger = logging.getLogger(APP_NAME)


@dataclass
class ProvisionResult:
    """Everything a provisioning run created or confirmed.

    Attributes:
        target (BackupTarget): The validated target.
        initialized (bool): True if a new repository was created.
        exclude_file (Path): The exclude list that was merged.
        added_patterns (list[str]): Patterns appended by this run.
        agent_path (Path): The generated wrapper script.
        error_log (Path): Where the agent records failures.
        schedule (ScheduleRegistration): The active schedule entry.
    """

    target: BackupTarget
    initialized: bool
    exclude_file: Path
    added_patterns: list[str]
    agent_path: Path
    error_log: Path
    schedule: ScheduleRegistration


def agent_path_for(name: str) -> Path:
    """Returns the wrapper script location for a target name."""
    return AGENT_DIR / f"backup_{name}_as_git.py"


def error_log_for(name: str) -> Path:
    """Returns the error log location for a target name."""
    return STATE_DIR / f"backup_{name}_as_git_error.log"


def ensure_repository(target: BackupTarget) -> bool:
    """Creates the repository if needed. Never touches an existing history.

    Returns:
        bool: True if a new repository was initialized.
    """
    try:
        target.repo_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise BackupEnvironmentError(
            f"Failed to create GITDIR {target.repo_dir}: {e}"
        ) from e

    if GitRepo.is_repository(target.repo_dir):
        logger.info(f"Using existing git repository at: {target.repo_dir}")
        return False

    logger.info(f"Initializing git repository at: {target.repo_dir}")
    GitRepo.init(target.repo_dir, target.git_binary)
    return True


def render_agent(target: BackupTarget, error_log: Path, config: Config) -> str:
    """Renders the self-contained wrapper script for a target.

    Every value is a literal so the script behaves the same under a scheduler's
    empty environment as it does from an interactive shell.
    """
    return textwrap.dedent(
        f"""\
        #!{sys.executable}
        # Generated by {APP_NAME} for NAME={target.name}. Re-run setup to regenerate.
        import sys
        from pathlib import Path

        from backup_as_git.agent import main
        from backup_as_git.target import BackupTarget

        TARGET = BackupTarget(
            name={target.name!r},
            work_dir=Path({str(target.work_dir)!r}),
            repo_dir=Path({str(target.repo_dir)!r}),
            ignore_patterns={target.ignore_patterns!r},
            git_binary={target.git_binary!r},
        )

        if __name__ == "__main__":
            sys.exit(
                main(
                    TARGET,
                    error_log=Path({str(error_log)!r}),
                    stale_after={config.agent.stale_lock_after!r},
                    message={config.agent.commit_message!r},
                    max_log_size={config.limits.max_log_size!r},
                )
            )
        """
    )


def write_agent(target: BackupTarget, config: Config) -> tuple[Path, Path]:
    """Writes the wrapper script atomically and restricts it to its owner.

    Returns:
        tuple[Path, Path]: The wrapper path and the error log it writes to.
    """
    agent_path = agent_path_for(target.name)
    error_log = error_log_for(target.name)
    tmp_file = agent_path.with_name(f"{agent_path.name}.tmp.{os.getpid()}")

    try:
        agent_path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_file, "w") as f:
            f.write(render_agent(target, error_log, config))
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_file, 0o700)
        os.replace(tmp_file, agent_path)
    except OSError as e:
        tmp_file.unlink(missing_ok=True)
        raise BackupEnvironmentError(
            f"Failed to write wrapper script {agent_path}: {e}"
        ) from e

    return agent_path, error_log


def provision(
    name: str,
    work_dir_raw: str,
    repo_dir_raw: str,
    ignore_spec: str | None = None,
    *,
    config: Config | None = None,
    scheduler: SchedulerStrategy | None = None,
    git_binary: str | None = None,
) -> ProvisionResult:
    """Sets up one backup target. Safe to re-run with the same arguments.

    Steps run in order and stop at the first failure; completed steps are
    left in place since each is idempotent:
    validation, repository, exclude list, wrapper script, schedule entry.

    Args:
        name (str): The target name.
        work_dir_raw (str): The directory to back up.
        repo_dir_raw (str): Where the repository lives (created if missing).
        ignore_spec (str | None): Semicolon-separated ignore patterns.
        config (Config | None): Settings; loaded from disk if None.
        scheduler (SchedulerStrategy | None): Probed from the host if None.
        git_binary (str | None): git executable; looked up on PATH if None.

    Returns:
        ProvisionResult: A summary of what is now in effect.

    Raises:
        ConfigError, BackupEnvironmentError, VcsOperationError, SchedulerError.
    """
    config = config or Config.load()
    target = BackupTarget.from_raw(
        name, work_dir_raw, repo_dir_raw, ignore_spec, git_binary=git_binary
    )

    initialized = ensure_repository(target)

    try:
        added = merge_excludes(
            target.exclude_file,
            target.name,
            target.work_dir,
            [*target.ignore_patterns, *config.files.ignore],
        )
    except OSError as e:
        raise BackupEnvironmentError(f"Failed to update exclude file: {e}") from e

    agent_path, error_log = write_agent(target, config)

    strategy = scheduler or get_scheduler()
    schedule = strategy.register(target.name, agent_path, config.schedule.interval)

    return ProvisionResult(
        target=target,
        initialized=initialized,
        exclude_file=target.exclude_file,
        added_patterns=added,
        agent_path=agent_path,
        error_log=error_log,
        schedule=schedule,
    )
