"""Inspect build output to choose a launch strategy."""

import logging
import os
from pathlib import Path

log = logging.getLogger(__name__)


def executable_name(stem: str) -> str:
    """Return the platform file name of a self-hosting test executable."""
    return f"{stem}.exe" if os.name == "nt" else stem


def _is_executable(path: Path) -> bool:
    if not path.is_file():
        return False
    return os.name == "nt" or os.access(path, os.X_OK)


def target_framework_dirs(project_path: Path, configuration: str) -> list[Path]:
    """List ``bin/<configuration>/<tfm>`` directories, newest first."""
    output_root = project_path.parent / "bin" / configuration
    try:
        candidates = [entry for entry in output_root.iterdir() if entry.is_dir()]
    except OSError:
        return []
    return sorted(candidates, key=lambda entry: entry.stat().st_mtime, reverse=True)


def find_direct_executable(project_path: Path, configuration: str) -> Path | None:
    """Find a self-hosting test executable next to the project's build output.

    The newest target framework directory holding the project's library
    decides: its adjacent executable is returned if present, otherwise the
    project is treated as runner-hosted.

    Args:
        project_path: Path to the project file
        configuration: Build configuration (e.g., "Debug")

    Returns:
        Path to the executable, or None when the tests need a hosted runner

    """
    stem = project_path.stem
    for framework_dir in target_framework_dirs(project_path, configuration):
        if not (framework_dir / f"{stem}.dll").is_file():
            continue

        executable = framework_dir / executable_name(stem)
        if _is_executable(executable):
            log.info("Found self-hosting test executable: %s", executable)
            return executable

        log.info("No executable next to %s, using hosted runner", framework_dir)
        return None

    log.info("No build output found for %s under bin/%s", stem, configuration)
    return None
