"""backup-as-git: scheduled git snapshots of an arbitrary directory.

This package provides the provisioning command-line interface, the scheduler
registrations, and the unattended agent that commits changes in a work tree
to a repository kept outside of it.
"""

from . import (
    agent,
    cli,
    config,
    constants,
    errors,
    exclude,
    git_wrapper,
    lock,
    provision,
    scheduler,
    target,
)

__all__ = [
    "agent",
    "cli",
    "config",
    "constants",
    "errors",
    "exclude",
    "git_wrapper",
    "lock",
    "provision",
    "scheduler",
    "target",
]
