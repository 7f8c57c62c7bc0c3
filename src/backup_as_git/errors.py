"""Exception hierarchy shared by the provisioner and the agent."""


class BackupError(RuntimeError):
    """Base class for every failure raised by backup-as-git."""


class ConfigError(BackupError):
    """Raised for bad arguments or an unsafe repository location."""


class BackupEnvironmentError(BackupError):
    """Raised when a required tool or directory is missing."""


class VcsOperationError(BackupError):
    """Raised when a git command exits non-zero.

    Attributes:
        stderr (str): The raw diagnostic text printed by git.
    """

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class SchedulerError(BackupError):
    """Raised when the agent cannot be registered with the OS scheduler."""
