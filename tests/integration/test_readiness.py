"""Integration tests for launching test processes paused for a debugger."""

import asyncio
import os
from pathlib import Path

import pytest

from dotnet_test_explorer.config import ExplorerConfig
from dotnet_test_explorer.debugging.direct_executable import DirectExecutableStrategy
from dotnet_test_explorer.debugging.host import AttachTarget
from dotnet_test_explorer.debugging.hosted_runner import HostedRunnerStrategy
from dotnet_test_explorer.exceptions import ProcessExitedError, ReadinessTimeoutError
from dotnet_test_explorer.models.run import RecordingTestRun, RunRequest
from dotnet_test_explorer.models.tree import TestTree
from dotnet_test_explorer.orchestrator import GroupPlan, plan_groups
from dotnet_test_explorer.results.correlator import ResultCorrelator
from dotnet_test_explorer.testing.tree import MATH_TESTS, calculator_group, node_id

from .conftest import FakeDotnet, WriteScriptFn

pytestmark = pytest.mark.skipif(
    os.name == "nt", reason="process groups and shebangs are POSIX-specific"
)

WAITS_FOR_DEBUGGER = """\
import json, sys, time
with open(sys.argv[0] + ".args", "w") as args:
    json.dump(sys.argv[1:], args)
print("Test run starting")
print("Waiting for debugger to attach... (pid will not be printed)", flush=True)
time.sleep(60)
"""

NEVER_READY = """\
import time
print("Loading test assemblies", flush=True)
time.sleep(60)
"""

CRASHES = """\
import sys
print("Unhandled exception. System.TypeLoadException", flush=True)
sys.exit(2)
"""


def calculator_plan(project: Path, *included_ids: str) -> GroupPlan:
    """Plan the calculator project at ``project``."""
    tree = TestTree([calculator_group(str(project))])
    (plan,) = plan_groups(tree, RunRequest(included_ids=included_ids))
    return plan


class TestDirectExecutable:
    """Readiness of a self-hosting test executable."""

    @pytest.fixture
    def executable_path(self, calc_project: Path) -> Path:
        """Return where the build puts the test executable."""
        return calc_project.parent / "bin" / "Debug" / "net8.0" / "Calc.Tests"

    def strategy(
        self,
        calc_project: Path,
        executable: Path,
        run: RecordingTestRun,
        readiness_timeout: float = 10.0,
    ) -> DirectExecutableStrategy:
        """Create a strategy for the whole calculator project."""
        return DirectExecutableStrategy(
            config=ExplorerConfig(readiness_timeout=readiness_timeout),
            plan=calculator_plan(
                calc_project, node_id(str(calc_project), f"{MATH_TESTS}.Adds")
            ),
            run=run,
            executable=executable,
        )

    async def test_ready_once_prompt_is_printed(
        self,
        calc_project: Path,
        executable_path: Path,
        write_executable: WriteScriptFn,
    ) -> None:
        """Returns the process-name target once the prompt appears."""
        executable = write_executable(executable_path, WAITS_FOR_DEBUGGER)
        run = RecordingTestRun()
        strategy = self.strategy(calc_project, executable, run)

        try:
            target = await strategy.prepare_and_wait_for_attachable()
        finally:
            strategy.kill()

        assert target == AttachTarget(process_name="Calc.Tests")
        assert strategy.running is not None
        await asyncio.wait_for(strategy.running.process.wait(), timeout=10)
        args = Path(f"{executable}.args").read_text()
        assert '"-waitForDebugger", "-method", "Calc.Tests.MathTests.Adds"' in args
        assert "Test run starting" in run.transcript

    async def test_timeout_kills_process(
        self,
        calc_project: Path,
        executable_path: Path,
        write_executable: WriteScriptFn,
    ) -> None:
        """Kills the process when the prompt never appears."""
        executable = write_executable(executable_path, NEVER_READY)
        strategy = self.strategy(
            calc_project, executable, RecordingTestRun(), readiness_timeout=0.5
        )

        with pytest.raises(ReadinessTimeoutError):
            await strategy.prepare_and_wait_for_attachable()

        assert strategy.running is not None
        exit_code = await asyncio.wait_for(strategy.running.process.wait(), 10)
        assert exit_code != 0

    async def test_early_exit_raises(
        self,
        calc_project: Path,
        executable_path: Path,
        write_executable: WriteScriptFn,
    ) -> None:
        """Reports the exit code when the process dies before the prompt."""
        executable = write_executable(executable_path, CRASHES)
        run = RecordingTestRun()
        strategy = self.strategy(calc_project, executable, run)

        with pytest.raises(ProcessExitedError) as exc_info:
            await strategy.prepare_and_wait_for_attachable()

        assert exc_info.value.exit_code == 2
        assert "System.TypeLoadException" in run.transcript


class TestHostedRunner:
    """Readiness of the platform test host."""

    async def test_attaches_to_reported_pid_and_collects_results(
        self, calc_project: Path, fake_dotnet: FakeDotnet, tmp_path: Path
    ) -> None:
        """Attaches by pid, then correlates the runner's result log."""
        results_directory = tmp_path / "results"
        results_directory.mkdir()
        tree = TestTree([calculator_group(str(calc_project))])
        (plan,) = plan_groups(tree, RunRequest())
        run = RecordingTestRun()
        strategy = HostedRunnerStrategy(
            config=ExplorerConfig(dotnet_path=str(fake_dotnet.path)),
            plan=plan,
            run=run,
            results_directory=results_directory,
            log_file_prefix="debug-run-1",
        )

        try:
            target = await strategy.prepare_and_wait_for_attachable()
            summary = await strategy.finish(ResultCorrelator(tree, run))
        finally:
            strategy.kill()

        assert strategy.running is not None
        assert target == AttachTarget(pid=strategy.running.pid)
        assert (summary.passed, summary.failed, summary.skipped) == (2, 1, 1)
        (call,) = fake_dotnet.calls()
        assert call[:2] == ["test", str(calc_project)]
        assert "--no-build" in call
        assert "--filter" not in call
        assert "Host debugging is enabled" in run.transcript
