"""Run orchestrator coordinating test execution across groups."""

import asyncio
import logging
import shutil
import tempfile
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from dotnet_test_explorer.config import ExplorerConfig
from dotnet_test_explorer.dotnet import DotnetTestOptions, run_dotnet_test
from dotnet_test_explorer.exceptions import (
    ResultLogNotFoundError,
    TestExplorerError,
)
from dotnet_test_explorer.filtering import build_filter
from dotnet_test_explorer.models.result import RunSummary
from dotnet_test_explorer.models.run import RunRequest, TestMessage, TestRun
from dotnet_test_explorer.models.tree import TestNode, TestTree
from dotnet_test_explorer.results.correlator import ResultCorrelator
from dotnet_test_explorer.results.locator import find_result_log
from dotnet_test_explorer.results.trx import load_trx

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class GroupPlan:
    """What to run for one group (one test project)."""

    group: TestNode
    items: Sequence[TestNode]
    leaves: Sequence[TestNode]
    run_all: bool = False

    @property
    def project_path(self) -> Path:
        """Return the project file path; group ids are project paths."""
        return Path(self.group.id)

    @property
    def name(self) -> str:
        """Return the display name of the group."""
        return self.group.label or self.project_path.name


@dataclass(frozen=True, kw_only=True)
class GroupResult:
    """Summary of one group invocation."""

    group_id: str
    name: str
    summary: RunSummary
    total_time_ms: float


def _unique(nodes: Sequence[TestNode]) -> list[TestNode]:
    seen: dict[str, TestNode] = {}
    for node in nodes:
        seen.setdefault(node.id, node)
    return list(seen.values())


def plan_groups(tree: TestTree, request: RunRequest) -> Sequence[GroupPlan]:
    """Partition the requested items by owning group.

    A group runs unfiltered when the group node itself is requested and
    nothing inside it is excluded. Otherwise the plan's items become the
    filter, narrowed to the remaining leaves when exclusions apply.
    """
    if request.included_ids:
        included = []
        for node_id in request.included_ids:
            if (node := tree.get(node_id)) is None:
                log.warning("Requested test not found in tree: %s", node_id)
                continue
            included.append(node)
    else:
        included = list(tree.roots)

    excluded_leaf_ids: set[str] = set()
    for node_id in request.excluded_ids:
        if (node := tree.get(node_id)) is not None:
            excluded_leaf_ids.update(leaf.id for leaf in tree.leaves_under(node))

    by_group: dict[str, tuple[TestNode, list[TestNode]]] = {}
    for node in included:
        if node.id in request.excluded_ids:
            continue
        if (group := tree.owning_group(node)) is None:
            log.warning("No owning group for %s, skipping", node.id)
            continue
        by_group.setdefault(group.id, (group, []))[1].append(node)

    plans: list[GroupPlan] = []
    for group, items in by_group.values():
        all_leaves = _unique(
            [leaf for item in items for leaf in tree.leaves_under(item)]
        )
        leaves = [leaf for leaf in all_leaves if leaf.id not in excluded_leaf_ids]
        has_exclusions = len(leaves) != len(all_leaves)

        if not leaves and all_leaves:
            log.info("Every requested test in %s is excluded", group.label)
            continue

        if any(item is group for item in items) and not has_exclusions:
            plans.append(
                GroupPlan(group=group, items=[group], leaves=leaves, run_all=True)
            )
        else:
            plans.append(
                GroupPlan(
                    group=group,
                    items=leaves if has_exclusions else _unique(items),
                    leaves=leaves,
                )
            )
    return plans


def format_summary_duration(duration_ms: float) -> str:
    """Format a duration as seconds with the raw milliseconds."""
    safe_ms = max(0, round(duration_ms))
    return f"{safe_ms / 1000:.2f}s ({safe_ms}ms)"


def append_summary_block(
    run: TestRun,
    summary: RunSummary,
    total_time_ms: float,
    title: str | None = None,
) -> None:
    """Write a summary block to the run log."""
    result_text = "❌ FAILED" if summary.failed > 0 else "✅ SUCCEEDED"
    execution_ms = (
        summary.execution_time_ms if summary.execution_time_ms > 0 else total_time_ms
    )
    header = f"Test Run Summary ({title})" if title else "Test Run Summary"

    run.append_line("")
    run.append_line("=" * 40)
    run.append_line(header)
    run.append_line("=" * 40)
    run.append_line(f"Total Tests: {summary.total}")
    run.append_line(f"Passed: {summary.passed}")
    run.append_line(f"Failed: {summary.failed}")
    run.append_line(f"Skipped: {summary.skipped}")
    run.append_line(f"Result: {result_text}")
    run.append_line(f"Test Execution Time: {format_summary_duration(execution_ms)}")
    run.append_line(
        f"Total Time (including build): {format_summary_duration(total_time_ms)}"
    )
    run.append_line("=" * 40)


def error_leaves(plan: GroupPlan, run: TestRun, message: str) -> None:
    """Mark every leaf of a group errored."""
    test_message = TestMessage(message=message)
    for leaf in plan.leaves:
        run.errored(leaf, test_message)


def skip_leaves(plan: GroupPlan, run: TestRun) -> None:
    """Mark every leaf of a group skipped."""
    for leaf in plan.leaves:
        run.skipped(leaf)


async def remove_directory(path: Path) -> None:
    """Remove a temporary directory tree off the event loop."""
    try:
        await asyncio.to_thread(shutil.rmtree, path)
        log.debug("Cleaned up results directory: %s", path)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("Failed to clean up results directory %s: %s", path, e)


@dataclass(frozen=True, kw_only=True)
class RunOrchestrator:
    """Runs requested tests one group at a time and folds results into a run."""

    verb: ClassVar[str] = "Running"

    tree: TestTree
    config: ExplorerConfig = field(default_factory=ExplorerConfig)

    async def run_tests(
        self, request: RunRequest, run: TestRun
    ) -> Sequence[GroupResult]:
        """Run the requested tests.

        Every requested leaf ends in a terminal state: results are correlated
        where a result log exists, failures error the affected group only, and
        anything left over after cancellation is marked skipped.

        Args:
            request: Included/excluded items and the cancellation event
            run: Sink receiving state transitions and the run log

        Returns:
            One result per group that produced a result log

        """
        plans = plan_groups(self.tree, request)
        pending = list(plans)
        results: list[GroupResult] = []
        correlator = ResultCorrelator(self.tree, run)
        results_directory = Path(
            await asyncio.to_thread(
                tempfile.mkdtemp, prefix=self.config.results_dir_prefix
            )
        )

        try:
            run.append_line(f"{self.verb} tests...")
            log.info(
                "%s %d item(s) across %d group(s)",
                self.verb,
                sum(len(plan.items) for plan in plans),
                len(plans),
            )
            log.info("Results directory: %s", results_directory)

            for index, plan in enumerate(plans, start=1):
                if request.is_cancelled:
                    log.info("Test run cancelled")
                    run.append_line("Test run cancelled")
                    break

                try:
                    result = await self._run_group(
                        plan,
                        index,
                        results_directory,
                        request,
                        run,
                        correlator,
                        labelled=len(plans) > 1,
                    )
                except TestExplorerError as e:
                    log.error("Test execution failed for %s: %s", plan.name, e)
                    run.append_line(f"Error: {e}")
                    error_leaves(plan, run, str(e))
                    result = None
                except Exception as e:
                    log.error(
                        "Test execution failed for %s: %s", plan.name, e, exc_info=e
                    )
                    run.append_line(f"Error: {e}")
                    error_leaves(plan, run, f"Test execution failed: {e}")
                    result = None

                pending.remove(plan)
                if result is not None:
                    results.append(result)

            if len(results) > 1:
                append_summary_block(
                    run,
                    RunSummary.combine(result.summary for result in results),
                    sum(result.total_time_ms for result in results),
                    "Combined",
                )
        finally:
            for plan in pending:
                skip_leaves(plan, run)
            await remove_directory(results_directory)
            run.end()

        return results

    async def _run_group(
        self,
        plan: GroupPlan,
        index: int,
        results_directory: Path,
        request: RunRequest,
        run: TestRun,
        correlator: ResultCorrelator,
        *,
        labelled: bool,
    ) -> GroupResult | None:
        """Invoke the runner for one group and correlate its result log."""
        prefix = f"test-run-{index}"
        for leaf in plan.leaves:
            run.enqueued(leaf)

        run.append_line("")
        if plan.run_all:
            test_filter = None
            log.info("Running all tests in %s", plan.project_path)
            run.append_line(f"Running all tests in project: {plan.name}")
        else:
            test_filter = build_filter(plan.items)
            log.info("Running filtered tests in %s: %s", plan.project_path, test_filter)
            run.append_line(f"Running filtered tests in project: {plan.name}")
            run.append_line(f"Filter: {test_filter}")

        started = time.monotonic()
        await run_dotnet_test(
            self.config,
            DotnetTestOptions(
                project_path=plan.project_path,
                results_directory=results_directory,
                log_file_prefix=prefix,
                configuration=self.config.configuration,
                filter=test_filter,
            ),
            run,
            cancel=request.cancel,
        )
        total_time_ms = (time.monotonic() - started) * 1000

        if request.is_cancelled:
            log.info("Run cancelled while testing %s", plan.name)
            run.append_line("Test run cancelled")
            skip_leaves(plan, run)
            return None

        trx_path = find_result_log(results_directory, prefix)
        if trx_path is None:
            log.warning("Result log not found for %s (prefix=%s)", plan.name, prefix)
            raise ResultLogNotFoundError(
                f"No test results (TRX) were produced for {plan.name}; "
                "the build or test host likely failed, see the test output"
            )

        document = await load_trx(trx_path)
        log.info("Parsed %d test result(s) from %s", len(document), trx_path.name)
        run.append_line(f"Parsed {len(document)} test result(s)")

        summary = correlator.apply(document.outcomes(), plan.leaves)
        append_summary_block(
            run, summary, total_time_ms, plan.name if labelled else None
        )
        return GroupResult(
            group_id=plan.group.id,
            name=plan.name,
            summary=summary,
            total_time_ms=total_time_ms,
        )
