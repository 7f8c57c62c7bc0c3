import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from .constants import EXCLUDE_RELPATH, LOCK_DIR_NAME, NAME_PATTERN
from .errors import BackupEnvironmentError, ConfigError


def parse_ignore_spec(spec: str | None) -> tuple[str, ...]:
    """Splits a semicolon-separated ignore spec into trimmed, unique patterns.

    Empty segments are dropped and the caller's order is preserved.
    """
    if not spec:
        return ()
    patterns = (part.strip() for part in spec.split(";"))
    return tuple(dict.fromkeys(p for p in patterns if p))


def is_within(path: Path, root: Path) -> bool:
    """True if `path` is `root` itself or lies anywhere beneath it."""
    return path == root or root in path.parents


def canonicalize(raw: str | Path) -> Path:
    """Expands `~`, makes absolute and resolves symlinks without requiring existence."""
    return Path(raw).expanduser().resolve()


@dataclass(frozen=True)
class BackupTarget:
    """An immutable description of one directory being backed up.

    Attributes:
        name (str): Short identifier used for generated file names and job labels.
        work_dir (Path): The directory being backed up.
        repo_dir (Path): The directory holding the `.git` metadata.
        ignore_patterns (tuple[str, ...]): Patterns registered in the exclude list.
        git_binary (str): Absolute path of the git executable.
    """

    name: str
    work_dir: Path
    repo_dir: Path
    ignore_patterns: tuple[str, ...] = ()
    git_binary: str = "git"

    @property
    def git_dir(self) -> Path:
        return self.repo_dir / ".git"

    @property
    def exclude_file(self) -> Path:
        return self.git_dir / EXCLUDE_RELPATH

    @property
    def lock_dir(self) -> Path:
        return self.git_dir / LOCK_DIR_NAME

    @classmethod
    def from_raw(
        cls,
        name: str,
        work_dir_raw: str,
        repo_dir_raw: str,
        ignore_spec: str | None = None,
        git_binary: str | None = None,
    ) -> "BackupTarget":
        """Validates user input and builds a target. Touches nothing on disk.

        Args:
            name (str): The target name.
            work_dir_raw (str): The directory to back up, as typed by the user.
            repo_dir_raw (str): Where the repository should live.
            ignore_spec (str | None): Semicolon-separated ignore patterns.
            git_binary (str | None): Explicit git path; looked up on PATH if None.

        Returns:
            BackupTarget: The validated, canonicalized target.

        Raises:
            ConfigError: If the name is invalid, the work directory is missing,
                or the repository would live inside the work directory.
            BackupEnvironmentError: If git cannot be found.
        """
        if not re.fullmatch(NAME_PATTERN, name or ""):
            raise ConfigError(
                "NAME must contain only letters, digits, underscores, or hyphens."
            )

        work_dir = canonicalize(work_dir_raw)
        repo_dir = canonicalize(repo_dir_raw)

        if not work_dir.is_dir():
            raise ConfigError(
                f"WORKDIR does not exist or is not a directory: {work_dir}"
            )

        if is_within(repo_dir, work_dir):
            raise ConfigError(
                f"GITDIR ({repo_dir}) must not be inside WORKDIR ({work_dir})."
            )

        binary = git_binary or shutil.which("git")
        if not binary:
            raise BackupEnvironmentError("git is required but not found in PATH.")

        return cls(
            name=name,
            work_dir=work_dir,
            repo_dir=repo_dir,
            ignore_patterns=parse_ignore_spec(ignore_spec),
            git_binary=str(Path(binary).absolute()),
        )
