"""End-to-end runs and debug sessions against a scripted dotnet CLI."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from dotnet_test_explorer.cli import main
from dotnet_test_explorer.config import ExplorerConfig
from dotnet_test_explorer.debugging.interceptor import InterceptorRegistry
from dotnet_test_explorer.debugging.orchestrator import DebugOrchestrator
from dotnet_test_explorer.models.run import RecordingTestRun, RunRequest
from dotnet_test_explorer.models.tree import TestTree
from dotnet_test_explorer.orchestrator import RunOrchestrator
from dotnet_test_explorer.testing.debugger import RecordingDebuggerHost
from dotnet_test_explorer.testing.tree import (
    DIVIDES,
    DIVIDES_CASES,
    MATH_TESTS,
    calculator_group,
    node_id,
)

from .conftest import FakeDotnet, WriteScriptFn

pytestmark = pytest.mark.skipif(
    os.name == "nt", reason="process groups and shebangs are POSIX-specific"
)

DIRECT_EXECUTABLE = """\
import time
print("Waiting for debugger to attach...", flush=True)
time.sleep(60)
"""


class CalculatorIds:
    """Node ids of the calculator project at a given path."""

    def __init__(self, project: Path) -> None:
        self.project = str(project)
        self.adds = node_id(self.project, f"{MATH_TESTS}.Adds")
        self.subtracts = node_id(self.project, f"{MATH_TESTS}.Subtracts")
        self.case_one = node_id(self.project, DIVIDES, DIVIDES_CASES[0])
        self.case_two = node_id(self.project, DIVIDES, DIVIDES_CASES[1])


@pytest.fixture
def ids(calc_project: Path) -> CalculatorIds:
    """Return node ids for the calculator project."""
    return CalculatorIds(calc_project)


@pytest.fixture
def tree(calc_project: Path) -> TestTree:
    """Create a tree holding the calculator project."""
    return TestTree([calculator_group(str(calc_project))])


@pytest.fixture
def config(fake_dotnet: FakeDotnet) -> ExplorerConfig:
    """Point the configuration at the fake dotnet CLI."""
    return ExplorerConfig(dotnet_path=str(fake_dotnet.path))


class TestRunTests:
    """Runs through the real process adapter."""

    async def test_runs_project_and_correlates_results(
        self,
        tree: TestTree,
        config: ExplorerConfig,
        fake_dotnet: FakeDotnet,
        ids: CalculatorIds,
    ) -> None:
        """Maps the runner's result log onto every leaf."""
        run = RecordingTestRun()

        results = await RunOrchestrator(tree=tree, config=config).run_tests(
            RunRequest(), run
        )

        assert run.states == {
            ids.adds: "passed",
            ids.subtracts: "failed",
            ids.case_one: "passed",
            ids.case_two: "skipped",
        }
        failure = run.messages[ids.subtracts]
        assert failure.location is not None
        assert failure.location.line == 21
        assert results[0].summary.total == 4
        (call,) = fake_dotnet.calls()
        assert "trx;LogFilePrefix=test-run-1" in call
        assert "--filter" not in call
        assert not Path(call[call.index("--results-directory") + 1]).exists()
        assert "Passed!" in run.transcript

    async def test_runs_filtered_selection(
        self,
        tree: TestTree,
        config: ExplorerConfig,
        fake_dotnet: FakeDotnet,
        ids: CalculatorIds,
    ) -> None:
        """Narrows the runner with a filter and reports only requested leaves."""
        run = RecordingTestRun()

        await RunOrchestrator(tree=tree, config=config).run_tests(
            RunRequest(included_ids=[ids.adds, ids.case_two]), run
        )

        (call,) = fake_dotnet.calls()
        test_filter = call[call.index("--filter") + 1]
        assert test_filter.startswith(f"FullyQualifiedName={MATH_TESTS}.Adds|")
        assert run.states[ids.adds] == "passed"
        assert run.states[ids.case_two] == "skipped"

    async def test_missing_dotnet_errors_leaves(
        self, tree: TestTree, ids: CalculatorIds, tmp_path: Path
    ) -> None:
        """Errors the group when the runner cannot be started."""
        run = RecordingTestRun()
        config = ExplorerConfig(dotnet_path=str(tmp_path / "missing" / "dotnet"))

        results = await RunOrchestrator(tree=tree, config=config).run_tests(
            RunRequest(), run
        )

        assert results == []
        assert run.states[ids.adds] == "errored"
        assert "Failed to start" in run.messages[ids.adds].message


class TestDebugTests:
    """Debug sessions through the real process adapter."""

    @pytest.fixture
    def host(self) -> RecordingDebuggerHost:
        """Create a debugger host whose sessions end right after starting."""
        return RecordingDebuggerHost()

    def orchestrator(
        self, tree: TestTree, config: ExplorerConfig, host: RecordingDebuggerHost
    ) -> DebugOrchestrator:
        """Create a debug orchestrator with its own registry."""
        return DebugOrchestrator(
            tree=tree, config=config, host=host, registry=InterceptorRegistry()
        )

    async def test_debugs_with_hosted_runner(
        self,
        tree: TestTree,
        config: ExplorerConfig,
        fake_dotnet: FakeDotnet,
        host: RecordingDebuggerHost,
        ids: CalculatorIds,
    ) -> None:
        """Builds, attaches to the test host and correlates its results."""
        run = RecordingTestRun()

        results = await self.orchestrator(tree, config, host).debug_tests(
            RunRequest(), run
        )

        build_call, test_call = fake_dotnet.calls()
        assert build_call[0] == "build"
        assert test_call[0] == "test"
        assert "trx;LogFilePrefix=debug-run-1" in test_call
        assert "--no-build" in test_call
        (attach,) = host.started
        assert attach["name"] == f"Test Explorer: Calc.Tests ({attach['processId']})"
        assert run.states == {
            ids.adds: "passed",
            ids.subtracts: "failed",
            ids.case_one: "passed",
            ids.case_two: "skipped",
        }
        assert results[0].summary.failed == 1
        assert "Debug session ended." in run.transcript

    async def test_debugs_direct_executable(
        self,
        tree: TestTree,
        config: ExplorerConfig,
        fake_dotnet: FakeDotnet,
        host: RecordingDebuggerHost,
        ids: CalculatorIds,
        calc_project: Path,
        write_executable: WriteScriptFn,
    ) -> None:
        """Attaches by process name and marks debugged leaves passed."""
        output = calc_project.parent / "bin" / "Debug" / "net8.0"
        write_executable(output / "Calc.Tests", DIRECT_EXECUTABLE)
        (output / "Calc.Tests.dll").write_bytes(b"MZ")
        run = RecordingTestRun()

        await self.orchestrator(tree, config, host).debug_tests(
            RunRequest(included_ids=[ids.subtracts]), run
        )

        (attach,) = host.started
        assert attach["processName"] == "Calc.Tests"
        assert run.states == {ids.subtracts: "passed"}
        assert [call[0] for call in fake_dotnet.calls()] == ["build"]

    async def test_build_failure_errors_leaves(
        self,
        tree: TestTree,
        config: ExplorerConfig,
        host: RecordingDebuggerHost,
        ids: CalculatorIds,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Never launches or attaches when the build fails."""
        monkeypatch.setenv("FAKE_BUILD_EXIT", "1")
        run = RecordingTestRun()

        results = await self.orchestrator(tree, config, host).debug_tests(
            RunRequest(), run
        )

        assert results == []
        assert host.started == []
        assert run.messages[ids.adds].message == "Build failed before debug run"
        assert "Build FAILED." in run.transcript


def test_cli_runs_serialized_tree(
    calc_project: Path,
    fake_dotnet: FakeDotnet,
    ids: CalculatorIds,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Runs a tree file from the command line and prints JSON results."""
    tree_path = tmp_path / "tree.json"
    tree_path.write_text(
        json.dumps(
            [
                {
                    "id": ids.project,
                    "label": "Calc.Tests",
                    "metadata": {"owning_group_id": ids.project, "kind": "group"},
                    "children": [
                        {
                            "id": ids.adds,
                            "label": "Adds",
                            "metadata": {
                                "qualified_name": f"{MATH_TESTS}.Adds",
                                "owning_group_id": ids.project,
                                "kind": "method",
                            },
                        }
                    ],
                }
            ]
        )
    )
    argv = [
        "dotnet-test-explorer",
        "run",
        "--tree",
        str(tree_path),
        "--config",
        json.dumps({"dotnet_path": str(fake_dotnet.path)}),
    ]

    with patch("sys.argv", argv), pytest.raises(SystemExit) as exc_info:
        main()

    assert exc_info.value.code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["passed"] == 1
    assert output["results"][0]["id"] == ids.adds
