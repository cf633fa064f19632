"""Invocations of the dotnet CLI."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from dotnet_test_explorer import process
from dotnet_test_explorer.config import ExplorerConfig
from dotnet_test_explorer.exceptions import BuildFailedError
from dotnet_test_explorer.models.result import ProcessResult
from dotnet_test_explorer.models.run import TestRun

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class DotnetTestOptions:
    """Options for one ``dotnet test`` invocation."""

    project_path: Path
    results_directory: Path
    log_file_prefix: str
    configuration: str = "Debug"
    filter: str | None = None
    no_build: bool = False


def dotnet_test_args(options: DotnetTestOptions) -> Sequence[str]:
    """Build the argument list for ``dotnet test``."""
    args = [
        "test",
        str(options.project_path),
        "--configuration",
        options.configuration,
        "--logger",
        f"trx;LogFilePrefix={options.log_file_prefix}",
        "--results-directory",
        str(options.results_directory),
    ]
    if options.no_build:
        args.append("--no-build")
    if options.filter:
        args.extend(["--filter", options.filter])
    return args


def dotnet_build_args(project_path: Path, configuration: str) -> Sequence[str]:
    """Build the argument list for ``dotnet build``."""
    return ["build", str(project_path), "--configuration", configuration]


async def run_dotnet_test(
    config: ExplorerConfig,
    options: DotnetTestOptions,
    run: TestRun,
    *,
    cancel: asyncio.Event | None = None,
) -> ProcessResult:
    """Run ``dotnet test`` to completion, streaming output into the run log."""
    result = await process.spawn(
        config.dotnet_path,
        dotnet_test_args(options),
        cwd=options.project_path.parent,
        on_stdout=run.append_line,
        on_stderr=run.append_line,
        cancel=cancel,
    )
    if result.exit_code != 0:
        run.append_line("")
        run.append_line(f"dotnet test exited with code {result.exit_code}")
    return result


async def build_project(
    config: ExplorerConfig,
    project_path: Path,
    run: TestRun,
    *,
    cancel: asyncio.Event | None = None,
) -> ProcessResult:
    """Build a project, streaming output into the run log.

    Raises:
        BuildFailedError: If the build exits with a non-zero code
        ProcessLaunchError: If dotnet cannot be started

    """
    run.append_line("")
    run.append_line(f"Building {project_path.name}...")
    result = await process.spawn(
        config.dotnet_path,
        dotnet_build_args(project_path, config.configuration),
        cwd=project_path.parent,
        on_stdout=run.append_line,
        on_stderr=run.append_line,
        cancel=cancel,
    )
    if result.exit_code != 0:
        raise BuildFailedError(str(project_path), result.exit_code)
    return result
