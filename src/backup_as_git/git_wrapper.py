import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME
from .errors import BackupEnvironmentError, VcsOperationError

logger = logging.getLogger(APP_NAME)


class GitRepo:
    """A wrapper around the Git command-line interface for a detached repository.

    The repository metadata and the working tree live in unrelated directories,
    so every command is issued with explicit `--git-dir` and `--work-tree`
    arguments instead of relying on the current directory or the environment.

    Attributes:
        git_dir (Path): The repository metadata directory (`<repo>/.git`).
        work_tree (Path): The directory whose contents are versioned.
        git_binary (str): Absolute path of the git executable.
    """

    def __init__(self, git_dir: Path, work_tree: Path, git_binary: str = "git"):
        """Initializes the GitRepo instance.

        Args:
            git_dir (Path): The repository metadata directory.
            work_tree (Path): The working tree directory.
            git_binary (str, optional): The git executable. Defaults to "git".

        Raises:
            BackupEnvironmentError: If the metadata directory does not exist.
        """
        self.git_dir = git_dir
        self.work_tree = work_tree
        self.git_binary = git_binary
        if not self.git_dir.is_dir():
            raise BackupEnvironmentError(f"Repository not found at {self.git_dir}")

    @staticmethod
    def is_repository(repo_dir: Path) -> bool:
        """Reports whether `repo_dir` already holds valid git metadata."""
        return (repo_dir / ".git" / "HEAD").is_file()

    @classmethod
    def init(cls, repo_dir: Path, git_binary: str = "git") -> "GitRepo":
        """Creates a new repository rooted at `repo_dir`.

        Args:
            repo_dir (Path): The directory that will hold the `.git` metadata.
            git_binary (str, optional): The git executable. Defaults to "git".

        Returns:
            GitRepo: A handle whose work tree is `repo_dir` until rebound.

        Raises:
            VcsOperationError: If `git init` fails.
        """
        try:
            subprocess.run(
                [git_binary, "init", str(repo_dir)],
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise VcsOperationError(
                f"git init failed at {repo_dir}: {(e.stderr or '').strip() or e}",
                stderr=e.stderr or "",
            ) from e
        except OSError as e:
            raise VcsOperationError(f"git init failed at {repo_dir}: {e}") from e
        return cls(repo_dir / ".git", repo_dir, git_binary)

    def _run(self, args: list[str], capture: bool = True) -> str:
        """Executes a Git command against this metadata/work-tree pair.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional): Whether to return stdout. Defaults to True.

        Returns:
            str: The stdout of the command if capture is True, otherwise "".

        Raises:
            VcsOperationError: If git exits non-zero or cannot be started.
        """
        cmd = [
            self.git_binary,
            f"--git-dir={self.git_dir}",
            f"--work-tree={self.work_tree}",
            *args,
        ]
        logger.debug(f"git {' '.join(args)} in {self.work_tree}")
        try:
            res = subprocess.run(
                cmd,
                cwd=self.work_tree,
                capture_output=True,
                text=True,
                check=True,
            )
            return res.stdout if capture else ""
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise VcsOperationError(
                f"git {args[0]} failed: {stderr or e}", stderr=stderr
            ) from e
        except OSError as e:
            raise VcsOperationError(f"git {args[0]} failed: {e}") from e

    def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status of the work tree.

        Returns:
            list[str]: One line per changed path; empty when the tree is clean.
        """
        output = self._run(["status", "--porcelain"])
        return [line for line in output.splitlines() if line]

    def add_all(self) -> None:
        """
        Stages every change (modified, deleted, and untracked files)
        in the work tree, honoring the exclude list.
        """
        self._run(["add", "-A"], capture=False)

    def commit(self, message: str) -> None:
        """Creates a new commit from the staged changes.

        Args:
            message (str): The commit message.
        """
        self._run(["commit", "-m", message], capture=False)
