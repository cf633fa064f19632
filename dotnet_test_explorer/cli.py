"""CLI entry point for running discovered .NET tests."""

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from dotnet_test_explorer.config import ExplorerConfig
from dotnet_test_explorer.models.run import RecordingTestRun, RunRequest
from dotnet_test_explorer.models.tree import TestTree
from dotnet_test_explorer.orchestrator import GroupResult, RunOrchestrator

STATUS_SYMBOLS = {
    "passed": "✅",
    "failed": "❌",
    "errored": "❗",
    "skipped": "⏭️",
}


def requested_leaf_ids(tree: TestTree, run: RecordingTestRun) -> Sequence[str]:
    """Return the ids of leaves that received a state, in tree order."""
    return [
        node.id
        for node in tree.walk()
        if node.is_leaf_runnable and node.id in run.states
    ]


def log_results_summary(
    log: logging.Logger,
    tree: TestTree,
    run: RecordingTestRun,
    group_results: Sequence[GroupResult],
) -> None:
    """Log a formatted summary of per-test and per-group results."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for node_id in requested_leaf_ids(tree, run):
        state = run.states[node_id]
        symbol = STATUS_SYMBOLS.get(state, "?")
        if (duration := run.durations.get(node_id)) is not None:
            log.info("%s %s: %s (%.0fms)", symbol, node_id, state, duration)
        else:
            log.info("%s %s: %s", symbol, node_id, state)
        if state in ("failed", "errored") and node_id in run.messages:
            first_line = run.messages[node_id].message.partition("\n")[0]
            log.info("  Message: %s", first_line)

    for group_result in group_results:
        summary = group_result.summary
        log.info(
            "%s: %d passed, %d failed, %d skipped of %d (%.2fs)",
            group_result.name,
            summary.passed,
            summary.failed,
            summary.skipped,
            summary.total,
            group_result.total_time_ms / 1000,
        )


def format_output(tree: TestTree, run: RecordingTestRun) -> dict[str, Any]:
    """Format leaf states for JSON output."""
    all_results: list[dict[str, Any]] = []
    for node_id in requested_leaf_ids(tree, run):
        message = run.messages.get(node_id)
        all_results.append(
            {
                "id": node_id,
                "state": run.states[node_id],
                "duration_ms": run.durations.get(node_id),
                "message": message.message if message else None,
            }
        )

    return {
        "total": len(all_results),
        "passed": sum(1 for r in all_results if r["state"] == "passed"),
        "failed": sum(1 for r in all_results if r["state"] == "failed"),
        "skipped": sum(1 for r in all_results if r["state"] == "skipped"),
        "errors": sum(1 for r in all_results if r["state"] == "errored"),
        "results": all_results,
    }


async def run(
    tree: TestTree,
    config: ExplorerConfig,
    included_ids: Sequence[str] = (),
    excluded_ids: Sequence[str] = (),
) -> int:
    """Run the requested tests and return exit code."""
    log = logging.getLogger("dotnet_test_explorer")

    request = RunRequest(included_ids=included_ids, excluded_ids=excluded_ids)
    test_run = RecordingTestRun()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, request.cancel.set)
    except NotImplementedError:
        log.debug("SIGINT cancellation is not supported on this platform")

    try:
        orchestrator = RunOrchestrator(tree=tree, config=config)
        group_results = await orchestrator.run_tests(request, test_run)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)

    sys.stderr.write(test_run.transcript.replace("\r\n", "\n"))
    log_results_summary(log, tree, test_run, group_results)

    output = format_output(tree, test_run)
    print(json.dumps(output, indent=2))

    has_failures = output["failed"] > 0 or output["errors"] > 0
    return 1 if has_failures else 0


def load_tree(tree_path: Path) -> TestTree:
    """Load a serialized test tree (a JSON list of root nodes)."""
    return TestTree.from_payload(json.loads(tree_path.read_text(encoding="utf-8")))


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Run discovered .NET tests")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run tests from a test tree")
    run_parser.add_argument(
        "--tree",
        type=Path,
        required=True,
        help="Path to the JSON test tree produced by discovery",
    )
    run_parser.add_argument(
        "--include",
        action="append",
        default=[],
        metavar="ID",
        help="Node id to run (repeatable; default: every group)",
    )
    run_parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="ID",
        help="Node id to leave out (repeatable)",
    )
    run_parser.add_argument(
        "--config",
        default="{}",
        help="JSON configuration overrides",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            tree=load_tree(args.tree),
            config=ExplorerConfig.model_validate_json(args.config),
            included_ids=args.include,
            excluded_ids=args.exclude,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
