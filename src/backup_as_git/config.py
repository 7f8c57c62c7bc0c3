import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    COMMIT_MESSAGE,
    CONFIG_FILE,
    MAX_LOG_SIZE,
    SCHEDULE_INTERVAL,
    STALE_LOCK_SECONDS,
)

logger = logging.getLogger(APP_NAME)


SIZE_UNITS = {"k": 1024, "m": 1024**2, "g": 1024**3}
TIME_UNITS = {
    "s": 1,
    "sec": 1,
    "m": 60,
    "min": 60,
    "h": 3600,
    "hr": 3600,
    "d": 86400,
    "day": 86400,
}


def _scaled(value: int | str, pattern: str, units: dict[str, int], kind: str) -> int:
    if isinstance(value, int):
        return value
    match = re.fullmatch(pattern, str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid {kind} format '{value}'")
    return int(float(match.group(1)) * units[match.group(2)])


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    return _scaled(value, r"(\d+(?:\.\d+)?)\s*([kmg])b?", SIZE_UNITS, "size")


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m', '1d') to seconds."""
    return _scaled(
        value, r"(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr|d|day)s?", TIME_UNITS, "time"
    )


@dataclass
class AgentConfig:
    """Policy baked into every generated agent.

    Attributes:
        stale_lock_after (int): Seconds after which a held lock is presumed abandoned.
        commit_message (str): Message used for each automatic snapshot.
    """

    stale_lock_after: int = STALE_LOCK_SECONDS
    commit_message: str = COMMIT_MESSAGE


@dataclass
class ScheduleConfig:
    """Scheduler registration settings.

    Attributes:
        interval (int): Seconds between agent runs.
    """

    interval: int = SCHEDULE_INTERVAL


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for an error log before rotation.
    """

    max_log_size: int = MAX_LOG_SIZE


@dataclass
class FilesConfig:
    """File management settings.

    Attributes:
        ignore (list[str]): Patterns appended to every target's exclude list.
    """

    ignore: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        agent (AgentConfig): Agent run-time policy.
        schedule (ScheduleConfig): Scheduler settings.
        limits (LimitsConfig): Resource limits.
        files (FilesConfig): Exclude list defaults.
    """

    agent: AgentConfig = field(default_factory=AgentConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    files: FilesConfig = field(default_factory=FilesConfig)

    # Cache for the parsed configuration file
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls) -> "Config":
        """Loads configuration from defaults and the user's config file.

        Returns:
            Config: A copy of the merged configuration; mutating it leaves the
                cache untouched.
        """
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        cached = cls._global_cache
        return replace(
            cached,
            agent=replace(cached.agent),
            schedule=replace(cached.schedule),
            limits=replace(cached.limits),
            files=replace(cached.files, ignore=list(cached.files.ignore)),
        )

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            if "agent" in data:
                self.agent = self._update_dataclass("agent", self.agent, data["agent"])
            if "schedule" in data:
                self.schedule = self._update_dataclass(
                    "schedule", self.schedule, data["schedule"]
                )
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "files" in data:
                new_ignores = self._ignore_patterns(data["files"].pop("ignore", []))
                self.files = self._update_dataclass("files", self.files, data["files"])
                if new_ignores:
                    merged = [*self.files.ignore, *new_ignores]
                    self.files.ignore = list(dict.fromkeys(merged))

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _ignore_patterns(value: Any) -> list[str]:
        """Normalizes `[files] ignore`, accepting a single pattern or a list."""
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            logger.warning(
                f"Config error in [files].ignore: expected a string or a list of "
                f"strings, got {value!r}. Falling back to default."
            )
            return []
        return [v.strip() for v in value if v.strip()]

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["stale_lock_after", "interval"]:
                    seconds = parse_time(v)
                    if seconds <= 0:
                        raise ValueError(f"Must be positive, got '{v}'")
                    filtered_updates[k] = seconds
                elif k == "commit_message":
                    if not isinstance(v, str) or not v.strip():
                        raise ValueError(f"Must be a non-empty string, got {v!r}")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
