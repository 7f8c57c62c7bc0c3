"""Tests for the end-to-end provisioning flow."""

import os
import stat
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import GIT, requires_git

import backup_as_git
from backup_as_git.config import Config, FilesConfig, ScheduleConfig
from backup_as_git.errors import BackupEnvironmentError, ConfigError
from backup_as_git.exclude import exclude_header
from backup_as_git.provision import ProvisionResult, provision, render_agent
from backup_as_git.scheduler import CronScheduler, ScheduleRegistration
from backup_as_git.target import BackupTarget

pytestmark = requires_git


@pytest.fixture
def home(tmp_path: Path, mocker: MagicMock) -> Path:
    """Redirects generated wrappers and logs into the test directory."""
    mocker.patch("backup_as_git.provision.AGENT_DIR", tmp_path / "agents")
    mocker.patch("backup_as_git.provision.STATE_DIR", tmp_path / "state")
    return tmp_path


@pytest.fixture
def work_dir(home: Path) -> Path:
    path = home / "Documents"
    path.mkdir()
    (path / "notes.md").write_text("hello")
    return path


@pytest.fixture
def fake_scheduler() -> MagicMock:
    sched = MagicMock()
    sched.register.return_value = ScheduleRegistration(
        kind="cron", identity="x", entry="0 * * * * x"
    )
    return sched


def run(
    name: str, work_dir: Path, repo_dir: Path, ignore: str, scheduler: object
) -> ProvisionResult:
    return provision(
        name,
        str(work_dir),
        str(repo_dir),
        ignore,
        config=Config(),
        scheduler=scheduler,
        git_binary=GIT,
    )


def test_provision_creates_everything(
    home: Path, work_dir: Path, fake_scheduler: MagicMock
) -> None:
    repo_dir = home / "backups" / "docs"

    result = run("docs", work_dir, repo_dir, ".DS_Store;*.tmp", fake_scheduler)

    assert result.initialized
    assert (repo_dir / ".git" / "HEAD").is_file()
    assert result.added_patterns == [".DS_Store", "*.tmp"]
    lines = result.exclude_file.read_text().splitlines()
    assert exclude_header("docs", work_dir.resolve()) in lines
    assert lines[-2:] == [".DS_Store", "*.tmp"]

    assert result.agent_path == home / "agents" / "backup_docs_as_git.py"
    assert result.error_log == home / "state" / "backup_docs_as_git_error.log"
    mode = stat.S_IMODE(result.agent_path.stat().st_mode)
    assert mode == 0o700

    fake_scheduler.register.assert_called_once_with(
        "docs", result.agent_path, Config().schedule.interval
    )
    # The work directory itself is never written to.
    assert sorted(p.name for p in work_dir.iterdir()) == ["notes.md"]


def test_generated_wrapper_embeds_literal_target(
    home: Path, work_dir: Path, fake_scheduler: MagicMock
) -> None:
    """Verifies the wrapper rebuilds the exact target without any environment."""
    result = run("docs", work_dir, home / "repo", "*.log", fake_scheduler)

    source = result.agent_path.read_text()
    assert source.startswith("#!")
    namespace: dict = {"__name__": "generated_wrapper"}
    exec(compile(source, str(result.agent_path), "exec"), namespace)

    assert namespace["TARGET"] == result.target
    assert namespace["TARGET"].git_binary == result.target.git_binary
    assert str(result.error_log) in source


def test_generated_wrapper_runs_a_backup(
    home: Path, work_dir: Path, fake_scheduler: MagicMock, git_identity: None
) -> None:
    result = run("docs", work_dir, home / "repo", "", fake_scheduler)
    src_dir = Path(backup_as_git.__file__).parent.parent
    env = {**os.environ, "PATH": "/nonexistent", "PYTHONPATH": str(src_dir)}

    res = subprocess.run(
        [str(result.agent_path)], capture_output=True, text=True, env=env
    )

    assert res.returncode == 0, res.stderr
    log = subprocess.run(
        [GIT, f"--git-dir={home / 'repo' / '.git'}", "log", "--format=%s"],
        capture_output=True,
        text=True,
    )
    assert log.stdout.splitlines() == ["autocommit"]


def test_provision_is_idempotent(
    home: Path, work_dir: Path, fake_scheduler: MagicMock
) -> None:
    repo_dir = home / "repo"
    run("docs", work_dir, repo_dir, ".DS_Store", fake_scheduler)
    exclude_before = (repo_dir / ".git" / "info" / "exclude").read_text()

    second = run("docs", work_dir, repo_dir, ".DS_Store", fake_scheduler)

    assert not second.initialized
    assert second.added_patterns == []
    assert (repo_dir / ".git" / "info" / "exclude").read_text() == exclude_before
    assert list((home / "agents").iterdir()) == [second.agent_path]


def test_rerun_with_cron_keeps_single_entry(
    home: Path, work_dir: Path, mocker: MagicMock
) -> None:
    table = {"text": ""}

    def fake_run(cmd: list[str], **kwargs) -> subprocess.CompletedProcess:
        if cmd == ["crontab", "-"]:
            table["text"] = kwargs["input"]
        return subprocess.CompletedProcess(cmd, 0, stdout=table["text"], stderr="")

    mocker.patch("backup_as_git.scheduler._run", side_effect=fake_run)

    first = run("docs", work_dir, home / "repo", "", CronScheduler())
    second = run("docs", work_dir, home / "repo", "", CronScheduler())

    assert first.schedule.created
    assert not second.schedule.created
    assert table["text"].count(str(first.agent_path)) == 1


def test_provision_rejects_repository_inside_work_dir(
    home: Path, work_dir: Path, fake_scheduler: MagicMock
) -> None:
    """Verifies validation fails before anything is created."""
    with pytest.raises(ConfigError, match="must not be inside WORKDIR"):
        run("docs", work_dir, work_dir / ".backup", "", fake_scheduler)

    assert not (work_dir / ".backup").exists()
    assert not (home / "agents").exists()
    fake_scheduler.register.assert_not_called()


def test_provision_rejects_bad_name(
    home: Path, work_dir: Path, fake_scheduler: MagicMock
) -> None:
    with pytest.raises(ConfigError, match="NAME"):
        run("my docs", work_dir, home / "repo", "", fake_scheduler)

    assert not (home / "repo").exists()


def test_provision_preserves_existing_history(
    home: Path, work_dir: Path, fake_scheduler: MagicMock, git_identity: None
) -> None:
    repo_dir = home / "repo"
    repo_dir.mkdir()
    subprocess.run([GIT, "init", str(repo_dir)], check=True, capture_output=True)
    subprocess.run(
        [GIT, "-C", str(repo_dir), "commit", "--allow-empty", "-m", "earlier"],
        check=True,
        capture_output=True,
    )

    result = run("docs", work_dir, repo_dir, "", fake_scheduler)

    assert not result.initialized
    log = subprocess.run(
        [GIT, "-C", str(repo_dir), "log", "--format=%s"],
        capture_output=True,
        text=True,
    )
    assert log.stdout.splitlines() == ["earlier"]


def test_provision_appends_configured_ignores(
    home: Path, work_dir: Path, fake_scheduler: MagicMock
) -> None:
    config = Config(
        files=FilesConfig(ignore=["*.swp", ".DS_Store"]),
        schedule=ScheduleConfig(interval=900),
    )

    result = provision(
        "docs",
        str(work_dir),
        str(home / "repo"),
        ".DS_Store",
        config=config,
        scheduler=fake_scheduler,
        git_binary=GIT,
    )

    assert result.added_patterns == [".DS_Store", "*.swp"]
    fake_scheduler.register.assert_called_once_with("docs", result.agent_path, 900)


def test_wrapper_write_failure_is_an_environment_error(
    home: Path, work_dir: Path, fake_scheduler: MagicMock, mocker: MagicMock
) -> None:
    mocker.patch("backup_as_git.provision.os.replace", side_effect=PermissionError())

    with pytest.raises(BackupEnvironmentError, match="wrapper script"):
        run("docs", work_dir, home / "repo", "", fake_scheduler)

    assert list((home / "agents").iterdir()) == []
    fake_scheduler.register.assert_not_called()


def test_render_agent_quotes_awkward_paths(tmp_path: Path) -> None:
    target = BackupTarget(
        name="odd",
        work_dir=tmp_path / "it's \"here\"",
        repo_dir=tmp_path / "repo with spaces",
        ignore_patterns=("a;b",),
        git_binary="/usr/bin/git",
    )

    source = render_agent(target, tmp_path / "err.log", Config())
    namespace: dict = {"__name__": "generated_wrapper"}
    exec(compile(source, "wrapper", "exec"), namespace)

    assert namespace["TARGET"] == target
