import os
from pathlib import Path

"""Global constants and filesystem layout for backup-as-git.

This module defines where generated agents, logs and user configuration live
(adhering to XDG standards where applicable), the application identifiers,
and the default policy values baked into each agent.
"""

# --- Identity ---
APP_NAME = "backup-as-git"
"""str: The human-readable application name."""

APP_LABEL = "com.backup-as-git"
"""str: The reverse-DNS style prefix for scheduler job labels."""

NAME_PATTERN = r"^[A-Za-z0-9_-]+$"
"""str: Allowed characters for a backup target name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "backup-as-git"
"""Path: The directory for per-target error logs and scheduler output."""

AGENT_DIR: Path = Path.home() / ".backup_as_git"
"""Path: The directory holding one generated agent wrapper per target."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/backup-as-git"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Scheduler Paths ---
LAUNCH_AGENTS_DIR: Path = Path.home() / "Library/LaunchAgents"
"""Path: Per-user launchd job definitions (macOS)."""

SYSTEMD_USER_DIR: Path = Path.home() / ".config/systemd/user"
"""Path: Per-user systemd unit files (Linux)."""

# --- Git / Agent Constants ---
EXCLUDE_RELPATH = Path("info") / "exclude"
"""Path: Location of the exclude list, relative to the git metadata dir."""

LOCK_DIR_NAME = "backup-as-git.lock"
"""str: Name of the execution lock directory inside the git metadata dir."""

COMMIT_MESSAGE = "autocommit"
"""str: The message recorded on every automatic snapshot."""

STALE_LOCK_SECONDS = 24 * 3600
"""int: Age after which an execution lock is presumed abandoned."""

SCHEDULE_INTERVAL = 3600
"""int: Seconds between scheduled agent runs."""

MAX_LOG_SIZE = 5 * 1024 * 1024
"""int: Bytes an error log may reach before rotation."""
