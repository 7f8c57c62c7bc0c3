import argparse
import logging
import sys

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from .constants import APP_NAME
from .errors import BackupError
from .provision import ProvisionResult, provision

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

EXAMPLE = (
    "Example:\n"
    "  backup-as-git docs ~/Documents ~/.backups/docs "
    '".DS_Store;*.tmp;node_modules/"'
)


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser for `backup-as-git NAME WORKDIR GITDIR [IGNORE]`."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description=(
            "Version WORKDIR in a git repository kept at GITDIR and commit "
            "any changes on a schedule."
        ),
        epilog=EXAMPLE,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "name",
        metavar="NAME",
        help="Short name (letters, digits, underscores or hyphens) for generated files",
    )
    parser.add_argument(
        "workdir",
        metavar="WORKDIR",
        help="Directory to back up. Must exist and must NOT contain GITDIR",
    )
    parser.add_argument(
        "gitdir",
        metavar="GITDIR",
        help="External repository directory. Created if it does not exist",
    )
    parser.add_argument(
        "ignore",
        metavar="IGNORE",
        nargs="?",
        default="",
        help="Semicolon-separated patterns written to .git/info/exclude",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show progress messages"
    )
    return parser


def setup_logging(verbose: bool) -> None:
    """Routes provisioning log records to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)


def print_summary(result: ProvisionResult) -> None:
    """Prints what is now in effect for the provisioned target."""
    target = result.target
    state = "new" if result.initialized else "existing"

    content = Text()
    content.append("Repository:      ", style="bold")
    content.append(f"{target.repo_dir} ({state})\n")
    content.append("Work directory:  ", style="bold")
    content.append(f"{target.work_dir}\n")
    content.append("Exclude file:    ", style="bold")
    content.append(f"{result.exclude_file}\n")
    if result.added_patterns:
        content.append(
            f"                 +{len(result.added_patterns)} pattern(s): "
            f"{', '.join(result.added_patterns)}\n",
            style="dim",
        )
    content.append("Wrapper:         ", style="bold")
    content.append(f"{result.agent_path}\n")
    content.append("Error log:       ", style="bold")
    content.append(f"{result.error_log}\n")
    content.append(f"Schedule ({result.schedule.kind}): ", style="bold")
    content.append(result.schedule.entry)
    if not result.schedule.created:
        content.append("\n(entry already present, left unchanged)", style="dim")

    console.print(
        Panel(
            content,
            title=f"[bold green]✔ Setup complete: {target.name}",
            expand=False,
        )
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the backup-as-git provisioner."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        result = provision(args.name, args.workdir, args.gitdir, args.ignore)
    except BackupError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {e}", highlight=False)
        sys.exit(1)

    print_summary(result)


if __name__ == "__main__":
    main()
