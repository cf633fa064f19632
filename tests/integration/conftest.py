"""Fixtures for integration tests."""

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pytest

from dotnet_test_explorer.testing.trx.payloads import TrxResult, trx_document
from dotnet_test_explorer.testing.tree import DIVIDES_CASES, MATH_TESTS

# Stands in for the dotnet CLI: ``build`` exits with FAKE_BUILD_EXIT and
# ``test`` copies results.trx into the results directory under the logger's
# prefix. With VSTEST_HOST_DEBUG=1 it prints its pid like a paused test host.
FAKE_DOTNET = """\
import json
import os
import shutil
import sys
import time

here = os.path.dirname(os.path.abspath(__file__))
with open(os.path.join(here, "calls.jsonl"), "a") as calls:
    calls.write(json.dumps(sys.argv[1:]) + "\\n")

verb = sys.argv[1]
if verb == "build":
    print("Build started...")
    code = int(os.environ.get("FAKE_BUILD_EXIT", "0"))
    print("Build FAILED." if code else "Build succeeded.", flush=True)
    sys.exit(code)

args = sys.argv[2:]
results_directory = args[args.index("--results-directory") + 1]
prefix = args[args.index("--logger") + 1].split("LogFilePrefix=", 1)[1]
if os.environ.get("VSTEST_HOST_DEBUG") == "1":
    print("Host debugging is enabled. Please attach debugger to testhost process")
    print(f"Process Id: {os.getpid()}, Name: testhost", flush=True)
    time.sleep(float(os.environ.get("FAKE_ATTACH_SECONDS", "0.2")))

shutil.copy(
    os.path.join(here, "results.trx"),
    os.path.join(results_directory, prefix + "_agent.trx"),
)
print("Passed!  - Failed: 0, Passed: 1", flush=True)
"""


class WriteScriptFn(Protocol):
    """Protocol for executable script creation function."""

    def __call__(self, path: Path, body: str) -> Path:
        """Write a Python script that runs when executed directly."""


def write_script(path: Path, body: str) -> Path:
    """Write ``body`` as an executable Python script at ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(0o755)
    return path


@dataclass(frozen=True, kw_only=True)
class FakeDotnet:
    """A scripted dotnet CLI and the calls it received."""

    path: Path

    @property
    def results(self) -> Path:
        """Return the result log copied by ``dotnet test``."""
        return self.path.parent / "results.trx"

    def calls(self) -> list[list[str]]:
        """Return the argument lists of every invocation so far."""
        calls_log = self.path.parent / "calls.jsonl"
        if not calls_log.exists():
            return []
        return [json.loads(line) for line in calls_log.read_text().splitlines()]


@pytest.fixture
def write_executable() -> WriteScriptFn:
    """Return a function to create executable scripts."""
    return write_script


@pytest.fixture
def fake_dotnet(tmp_path: Path) -> FakeDotnet:
    """Create a fake dotnet CLI reporting calculator results."""
    dotnet = FakeDotnet(path=write_script(tmp_path / "sdk" / "dotnet", FAKE_DOTNET))
    dotnet.results.write_text(
        trx_document(
            [
                TrxResult(class_name=MATH_TESTS, method_name="Adds"),
                TrxResult(
                    class_name=MATH_TESTS,
                    method_name="Subtracts",
                    outcome="Failed",
                    error_message="Assert.Equal() Failure",
                    stack_trace=(
                        "   at Calc.Tests.MathTests.Subtracts() in "
                        "/work/Calc.Tests/MathTests.cs:line 21"
                    ),
                ),
                TrxResult(
                    class_name=MATH_TESTS,
                    method_name="Divides",
                    test_name=DIVIDES_CASES[0],
                ),
            ]
        )
    )
    return dotnet


@pytest.fixture
def calc_project(tmp_path: Path) -> Path:
    """Create an empty calculator test project."""
    project = tmp_path / "Calc.Tests" / "Calc.Tests.csproj"
    project.parent.mkdir()
    project.write_text('<Project Sdk="Microsoft.NET.Sdk" />')
    return project


@pytest.fixture(autouse=True)
def _no_inherited_debug_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("VSTEST_HOST_DEBUG", "VSTEST_DEBUG_NOBP", "FAKE_BUILD_EXIT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PYTHONUNBUFFERED", "1")
