"""Shared fixtures for the backup-as-git test suite."""

import logging
import shutil
import signal
import subprocess
from collections.abc import Iterator
from pathlib import Path

import pytest

from backup_as_git.agent import TERMINATION_SIGNALS
from backup_as_git.config import Config
from backup_as_git.constants import APP_NAME
from backup_as_git.git_wrapper import GitRepo
from backup_as_git.target import BackupTarget

GIT = shutil.which("git")

requires_git = pytest.mark.skipif(GIT is None, reason="git is not installed")


@pytest.fixture(autouse=True)
def clear_config_cache() -> Iterator[None]:
    """Ensures every test starts with a clean config cache."""
    Config._global_cache = None
    yield
    Config._global_cache = None


@pytest.fixture(autouse=True)
def restore_logger() -> Iterator[None]:
    """Undoes handlers and levels installed by `setup_logging` calls."""
    logger = logging.getLogger(APP_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers = handlers
    logger.setLevel(level)


@pytest.fixture
def restore_signals() -> Iterator[None]:
    """Restores the termination signal handlers replaced by the agent."""
    saved = {sig: signal.getsignal(sig) for sig in TERMINATION_SIGNALS}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


@pytest.fixture
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    """Gives git a committer identity independent of the host's configuration."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Backup Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "backup@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Backup Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "backup@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")


@pytest.fixture
def target(tmp_path: Path, git_identity: None) -> BackupTarget:
    """A work directory and an initialized detached repository beside it."""
    if GIT is None:
        pytest.skip("git is not installed")
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    repo_dir = tmp_path / "repo"
    GitRepo.init(repo_dir, GIT)
    return BackupTarget(
        name="docs", work_dir=work_dir, repo_dir=repo_dir, git_binary=GIT
    )


def git_out(target: BackupTarget, *args: str) -> subprocess.CompletedProcess:
    """Runs a read-only git command against a target's repository."""
    return subprocess.run(
        [
            target.git_binary,
            f"--git-dir={target.git_dir}",
            f"--work-tree={target.work_dir}",
            *args,
        ],
        capture_output=True,
        text=True,
    )


def commit_count(target: BackupTarget) -> int:
    """Number of commits on HEAD, 0 for an unborn branch."""
    res = git_out(target, "rev-list", "--count", "HEAD")
    return int(res.stdout.strip()) if res.returncode == 0 else 0
