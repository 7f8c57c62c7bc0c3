import logging
import plistlib
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    APP_LABEL,
    APP_NAME,
    LAUNCH_AGENTS_DIR,
    STATE_DIR,
    SYSTEMD_USER_DIR,
)
from .errors import SchedulerError

logger = logging.getLogger(APP_NAME)


@dataclass
class ScheduleRegistration:
    """Describes the schedule entry that now drives an agent.

    Attributes:
        kind (str): 'launchd', 'systemd' or 'cron'.
        identity (str): The job label, timer unit, or agent path (cron).
        entry (str): A human-readable rendering of the active entry.
        created (bool): False when an existing entry was left untouched.
    """

    kind: str
    identity: str
    entry: str
    created: bool = True


def job_label(name: str) -> str:
    """Returns the scheduler identity for a backup target."""
    return f"{APP_LABEL}.{name}"


def log_paths(name: str) -> tuple[Path, Path]:
    """Returns the (stdout, stderr) capture files for a target's scheduled runs."""
    return (
        STATE_DIR / f"backup_{name}_as_git.out.log",
        STATE_DIR / f"backup_{name}_as_git.err.log",
    )


def cron_expression(interval: int) -> str:
    """Approximates an interval in seconds with a crontab time specification."""
    minutes = max(1, interval // 60)
    if minutes == 1:
        return "* * * * *"
    if minutes < 60:
        return f"*/{minutes} * * * *"
    hours = minutes // 60
    if hours == 1:
        return "0 * * * *"
    if hours < 24:
        return f"0 */{hours} * * *"
    return "0 0 * * *"


def _run(cmd: list[str], **kwargs) -> subprocess.CompletedProcess:
    """Runs a scheduler command, mapping a missing binary to SchedulerError."""
    try:
        return subprocess.run(cmd, capture_output=True, text=True, **kwargs)
    except OSError as e:
        raise SchedulerError(f"Could not run {cmd[0]}: {e}") from e


class SchedulerStrategy:
    """Base class defining the interface for host scheduler registration."""

    kind = "none"

    def register(
        self, name: str, agent_path: Path, interval: int
    ) -> ScheduleRegistration:
        """Idempotently schedules `agent_path` to run every `interval` seconds.

        Args:
            name (str): The backup target name.
            agent_path (Path): The generated wrapper script.
            interval (int): Seconds between runs.

        Returns:
            ScheduleRegistration: The entry now in effect.

        Raises:
            SchedulerError: If the host scheduler rejects the job.
        """
        raise SchedulerError(
            "No supported scheduler found (launchd, systemd or cron)."
        )


class LaunchdScheduler(SchedulerStrategy):
    """Per-user launchd agent (macOS)."""

    kind = "launchd"

    def plist_path(self, name: str) -> Path:
        return LAUNCH_AGENTS_DIR / f"{job_label(name)}.plist"

    def register(
        self, name: str, agent_path: Path, interval: int
    ) -> ScheduleRegistration:
        """Writes the job plist, then unloads any prior copy and loads it."""
        label = job_label(name)
        plist = self.plist_path(name)
        out_log, err_log = log_paths(name)

        job = {
            "Label": label,
            "ProgramArguments": [str(agent_path)],
            "StartInterval": interval,
            "RunAtLoad": False,
            "StandardOutPath": str(out_log),
            "StandardErrorPath": str(err_log),
        }
        try:
            plist.parent.mkdir(parents=True, exist_ok=True)
            out_log.parent.mkdir(parents=True, exist_ok=True)
            with open(plist, "wb") as f:
                plistlib.dump(job, f)
        except OSError as e:
            raise SchedulerError(f"Failed to write {plist}: {e}") from e

        # An unloaded job is expected on first install.
        _run(["launchctl", "unload", str(plist)])
        res = _run(["launchctl", "load", str(plist)])
        if res.returncode != 0:
            raise SchedulerError(
                f"launchctl load failed for {label}: {res.stderr.strip()}"
            )

        logger.info(f"launchd job {label} loaded from {plist}")
        return ScheduleRegistration(
            kind=self.kind,
            identity=label,
            entry=f"{plist} (every {interval}s)",
        )


class SystemdScheduler(SchedulerStrategy):
    """Per-user systemd service and timer pair (Linux)."""

    kind = "systemd"

    def register(
        self, name: str, agent_path: Path, interval: int
    ) -> ScheduleRegistration:
        """Writes the service and timer units, then reloads and restarts the timer."""
        label = job_label(name)
        service_file = SYSTEMD_USER_DIR / f"{label}.service"
        timer_file = SYSTEMD_USER_DIR / f"{label}.timer"
        out_log, err_log = log_paths(name)

        service_content = f"""[Unit]
Description=backup-as-git snapshot of {name}

[Service]
Type=oneshot
ExecStart={shlex.quote(str(agent_path))}
StandardOutput=append:{out_log}
StandardError=append:{err_log}
"""
        timer_content = f"""[Unit]
Description=Snapshot {name} every {interval} seconds

[Timer]
OnBootSec=5min
OnUnitActiveSec={interval}s
Unit={label}.service

[Install]
WantedBy=timers.target
"""

        try:
            SYSTEMD_USER_DIR.mkdir(parents=True, exist_ok=True)
            out_log.parent.mkdir(parents=True, exist_ok=True)
            with open(service_file, "w") as f:
                f.write(service_content)
            with open(timer_file, "w") as f:
                f.write(timer_content)
        except OSError as e:
            raise SchedulerError(
                f"Failed to write systemd units for {label}: {e}"
            ) from e

        for cmd in (
            ["systemctl", "--user", "daemon-reload"],
            ["systemctl", "--user", "enable", f"{label}.timer"],
            ["systemctl", "--user", "restart", f"{label}.timer"],
        ):
            res = _run(cmd)
            if res.returncode != 0:
                raise SchedulerError(
                    f"{' '.join(cmd)} failed: {res.stderr.strip()}"
                )

        logger.info(f"systemd timer {label}.timer active")
        return ScheduleRegistration(
            kind=self.kind,
            identity=f"{label}.timer",
            entry=f"{timer_file} (every {interval}s)",
        )


class CronScheduler(SchedulerStrategy):
    """Per-user crontab fallback."""

    kind = "cron"

    def read_table(self) -> str:
        """Returns the current crontab; a user without one has an empty table."""
        res = _run(["crontab", "-l"])
        return res.stdout if res.returncode == 0 else ""

    def register(
        self, name: str, agent_path: Path, interval: int
    ) -> ScheduleRegistration:
        """Appends one entry unless a line already references `agent_path`."""
        table = self.read_table()
        for line in table.splitlines():
            if str(agent_path) in line:
                return ScheduleRegistration(
                    kind=self.kind,
                    identity=str(agent_path),
                    entry=line,
                    created=False,
                )

        cron_line = (
            f"{cron_expression(interval)} {shlex.quote(str(agent_path))} "
            ">/dev/null 2>&1"
        )
        if table and not table.endswith("\n"):
            table += "\n"
        res = _run(["crontab", "-"], input=f"{table}{cron_line}\n")
        if res.returncode != 0:
            raise SchedulerError(
                f"Failed to install crontab entry: {res.stderr.strip()}"
            )

        logger.info(f"Added cron entry for {agent_path}")
        return ScheduleRegistration(
            kind=self.kind, identity=str(agent_path), entry=cron_line
        )


def _systemd_user_available() -> bool:
    if not shutil.which("systemctl"):
        return False
    try:
        res = subprocess.run(
            ["systemctl", "--user", "show-environment"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return res.returncode == 0


def get_scheduler() -> SchedulerStrategy:
    """Factory function probing the host for a scheduling capability.

    Returns:
        SchedulerStrategy: LaunchdScheduler on macOS, SystemdScheduler when a
        per-user systemd manager answers, CronScheduler when `crontab` exists,
        otherwise the base strategy (whose `register` raises SchedulerError).
    """
    if sys.platform == "darwin" and shutil.which("launchctl"):
        return LaunchdScheduler()
    if sys.platform.startswith("linux") and _systemd_user_available():
        return SystemdScheduler()
    if shutil.which("crontab"):
        return CronScheduler()
    return SchedulerStrategy()
