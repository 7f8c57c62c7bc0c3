"""Idempotent maintenance of a repository's `info/exclude` list."""

import logging
from collections.abc import Iterable
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


def exclude_header(name: str, work_dir: Path) -> str:
    """Returns the marker line written once per provisioned target."""
    return f"# Added by {APP_NAME} for NAME={name} (WORKDIR={work_dir})"


def merge_excludes(
    exclude_file: Path, name: str, work_dir: Path, patterns: Iterable[str]
) -> list[str]:
    """Appends the target header and any missing patterns to an exclude file.

    Existing lines are never rewritten. A pattern is skipped when an identical
    line is already present (including one appended earlier in this call).

    Args:
        exclude_file (Path): The exclude list, usually `<repo>/.git/info/exclude`.
        name (str): The target name, used in the header line.
        work_dir (Path): The backed-up directory, used in the header line.
        patterns (Iterable[str]): Candidate patterns in caller order.

    Returns:
        list[str]: The patterns actually appended.
    """
    exclude_file.parent.mkdir(parents=True, exist_ok=True)
    exclude_file.touch(exist_ok=True)

    content = exclude_file.read_text()
    present = set(content.splitlines())

    header = exclude_header(name, work_dir)
    chunks: list[str] = []
    if header not in present:
        chunks.extend(["", header])
        present.add(header)

    added: list[str] = []
    for raw in patterns:
        pattern = raw.strip()
        if not pattern or pattern in present:
            continue
        added.append(pattern)
        present.add(pattern)

    chunks.extend(added)
    if not chunks:
        return added

    with open(exclude_file, "a") as f:
        # Keep our first line on its own when the file lacks a final newline.
        if content and not content.endswith("\n"):
            f.write("\n")
        f.write("\n".join(chunks) + "\n")

    if added:
        logger.debug(f"Excluded {len(added)} new pattern(s) in {exclude_file}")
    return added
