"""Models for process and test execution results."""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, Self

type Outcome = Literal["Passed", "Failed", "NotExecuted", "Skipped"]


@dataclass(frozen=True, kw_only=True)
class ProcessResult:
    """Exit code and accumulated output of a finished process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True, kw_only=True)
class ParsedOutcome:
    """Result of a single test case as reported by the result log.

    Contains only what the log says; mapping onto the tree happens later.
    """

    test_id: str = ""
    qualified_name: str
    display_name: str
    outcome: Outcome
    duration_ms: float = 0.0
    error_message: str | None = None
    stack_trace: str | None = None
    std_out: str | None = None


@dataclass(frozen=True, kw_only=True)
class RunSummary:
    """Totals for one group invocation, or several combined."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    execution_time_ms: float = 0.0

    def record(self, outcome: Outcome, duration_ms: float = 0.0) -> Self:
        """Return a copy with one more outcome counted."""
        return type(self)(
            passed=self.passed + (outcome == "Passed"),
            failed=self.failed + (outcome == "Failed"),
            skipped=self.skipped + (outcome in ("Skipped", "NotExecuted")),
            total=self.total + 1,
            execution_time_ms=self.execution_time_ms + max(duration_ms, 0.0),
        )

    @classmethod
    def combine(cls, summaries: Iterable[Self]) -> Self:
        """Sum several summaries into one."""
        combined = cls()
        for summary in summaries:
            combined = cls(
                passed=combined.passed + summary.passed,
                failed=combined.failed + summary.failed,
                skipped=combined.skipped + summary.skipped,
                total=combined.total + summary.total,
                execution_time_ms=combined.execution_time_ms
                + summary.execution_time_ms,
            )
        return combined
