"""Locate result logs written by a test invocation."""

from pathlib import Path

TRX_SUFFIX = ".trx"


def find_result_log(results_directory: Path, prefix: str) -> Path | None:
    """Find the result log whose file name starts with ``prefix``.

    Returns the first match in name order, or None when the directory is
    missing or holds no matching log.
    """
    if not results_directory.is_dir():
        return None

    matches = sorted(
        entry
        for entry in results_directory.iterdir()
        if entry.is_file()
        and entry.name.startswith(prefix)
        and entry.suffix.lower() == TRX_SUFFIX
    )
    return matches[0] if matches else None
