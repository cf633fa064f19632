"""Map parsed outcomes back onto leaves of the test tree."""

import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from dotnet_test_explorer.models.result import ParsedOutcome, RunSummary
from dotnet_test_explorer.models.run import TestMessage, TestRun
from dotnet_test_explorer.models.tree import SourceLocation, TestNode, TestTree

log = logging.getLogger(__name__)

# Runners shorten long parameterized display names: "Case A, ···}"
TRUNCATION_MARKER = re.compile(r"[.·…]{1,5}\s*[})]\s*$")
STACK_LOCATION = re.compile(r"\s+in\s+(.+?):line\s+(\d+)", re.IGNORECASE)


def strip_truncation_marker(display_name: str) -> str | None:
    """Return the display name without its truncation marker.

    Returns None when the name is not truncated or nothing usable remains.
    """
    if (match := TRUNCATION_MARKER.search(display_name)) is None:
        return None
    prefix = display_name[: match.start()].rstrip(" ,")
    return prefix or None


def parse_stack_trace_location(stack_trace: str) -> SourceLocation | None:
    """Find the first ``in <file>:line <n>`` frame that names a real file."""
    for line in stack_trace.splitlines():
        if (match := STACK_LOCATION.search(line)) is None:
            continue
        file_path = match.group(1).strip()
        line_number = int(match.group(2))
        if ("/" in file_path or "\\" in file_path) and line_number > 0:
            return SourceLocation(path=Path(file_path), line=line_number)
    return None


def build_failure_message(outcome: ParsedOutcome) -> TestMessage:
    """Render a failed outcome, keeping the full stack trace in the text."""
    message = outcome.error_message or "Test failed"
    if not outcome.stack_trace:
        return TestMessage(message=message)

    return TestMessage(
        message=f"{message}\n\nStack Trace:\n{outcome.stack_trace}",
        location=parse_stack_trace_location(outcome.stack_trace),
    )


def format_duration(duration_ms: float) -> str:
    """Format a duration for the run log."""
    if duration_ms >= 1000:
        return f"{duration_ms / 1000:.2f} s"
    return f"{duration_ms:.0f} ms"


class ResultCorrelator:
    """Apply parsed outcomes to the leaves of a tree.

    Outcomes are matched by exact parameterized case key first, then by
    prefix when the reported display name was truncated, then by plain
    qualified name. Requested leaves that receive no outcome are marked
    skipped, so no leaf is left running.
    """

    def __init__(self, tree: TestTree, run: TestRun) -> None:
        self.tree = tree
        self.run = run
        self.by_name: dict[str, TestNode] = {}
        self.by_case: dict[tuple[str, str], TestNode] = {}

        for node in tree.walk():
            if not node.is_leaf_runnable or node.metadata is None:
                continue
            if node.kind == "case":
                case_name = node.metadata.display_name or node.label
                self.by_case[(node.qualified_name, case_name)] = node
            else:
                self.by_name[node.qualified_name] = node

    def match(self, outcome: ParsedOutcome) -> TestNode | None:
        """Find the leaf an outcome belongs to."""
        key = (outcome.qualified_name, outcome.display_name)
        if (node := self.by_case.get(key)) is not None:
            return node

        prefix = strip_truncation_marker(outcome.display_name)
        if prefix is not None:
            node = self._match_case_prefix(outcome.qualified_name, prefix)
            if node is not None:
                return node

        return self.by_name.get(outcome.qualified_name)

    def _match_case_prefix(
        self, qualified_name: str, prefix: str
    ) -> TestNode | None:
        for (case_qualified_name, case_name), node in self.by_case.items():
            if case_qualified_name == qualified_name and case_name.startswith(prefix):
                return node
        return None

    def apply(
        self,
        outcomes: Iterable[ParsedOutcome],
        requested_leaves: Sequence[TestNode],
    ) -> RunSummary:
        """Apply outcomes in order and skip-fill the unreported leaves.

        Outcomes for leaves outside ``requested_leaves`` are dropped, since a
        filter clause naming one case also runs its sibling cases.
        """
        summary = RunSummary()
        requested = {leaf.id for leaf in requested_leaves}
        reported: set[str] = set()

        for outcome in outcomes:
            node = self.match(outcome)
            if node is None:
                log.warning(
                    "Result not found in test tree: %s (%s)",
                    outcome.qualified_name,
                    outcome.display_name,
                )
                self.run.append_line(
                    f"Warning: result log contains test not found in tree: "
                    f"{outcome.qualified_name}"
                )
                continue

            if node.id not in requested:
                log.debug("Ignoring result for unrequested test %s", node.id)
                continue

            self._apply_outcome(node, outcome)
            reported.add(node.id)
            summary = summary.record(outcome.outcome, outcome.duration_ms)

        for leaf in requested_leaves:
            if leaf.id in reported:
                continue
            log.debug("No result reported for %s, marking skipped", leaf.id)
            self.run.skipped(leaf)
            reported.add(leaf.id)
            summary = summary.record("Skipped")

        return summary

    def _apply_outcome(self, node: TestNode, outcome: ParsedOutcome) -> None:
        name = outcome.display_name or outcome.qualified_name
        duration = format_duration(outcome.duration_ms)
        self.run.started(node)

        match outcome.outcome:
            case "Passed":
                self.run.passed(node, outcome.duration_ms)
                self.run.append_line(f"  Passed {name} [{duration}]")
            case "Failed":
                message = build_failure_message(outcome)
                self.run.failed(node, message, outcome.duration_ms)
                self.run.append_line(f"  Failed {name} [{duration}]")
                for line in (outcome.error_message or "Test failed").splitlines():
                    self.run.append_line(f"    {line}")
            case "Skipped" | "NotExecuted":
                self.run.skipped(node)
                self.run.append_line(f"  Skipped {name}")

        if outcome.std_out:
            self.run.append_line("")
            self.run.append_line(f"--- Output from {name} ---")
            for line in outcome.std_out.splitlines():
                self.run.append_line(line)
