"""Launch strategy for test projects that build a self-hosting executable."""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from dotnet_test_explorer.debugging.base import LaunchStrategy
from dotnet_test_explorer.debugging.host import AttachTarget
from dotnet_test_explorer.models.result import RunSummary
from dotnet_test_explorer.results.correlator import ResultCorrelator

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class DirectExecutableStrategy(LaunchStrategy):
    """Runs the test executable itself, paused until a debugger attaches.

    The executable never prints its own process id, so the debugger
    attaches by process name. No result log is written in this mode.
    """

    name = "DirectExecutable"

    executable: Path

    @property
    def process_name(self) -> str:
        """Return the name the running executable is listed under."""
        return self.executable.name.removesuffix(".exe")

    def selector_args(self) -> Sequence[str]:
        """Build ``-method``/``-class`` arguments for the requested items."""
        if self.plan.run_all:
            return []

        args: list[str] = []
        seen: set[tuple[str, str]] = set()
        for item in self.plan.items:
            name = item.qualified_name
            if item.kind == "group" or not name:
                continue
            flag = "-method" if item.kind in ("method", "case") else "-class"
            if (flag, name) in seen:
                continue
            seen.add((flag, name))
            args.extend([flag, name])
        return args

    async def prepare_and_wait_for_attachable(self) -> AttachTarget:
        """Start the executable and wait for its debugger prompt."""
        self.run.append_line(f"Starting {self.executable.name}...")
        await self._launch_until_ready(
            str(self.executable),
            [self.config.wait_for_debugger_flag, *self.selector_args()],
            re.compile(re.escape(self.config.direct_ready_phrase)),
            cwd=self.executable.parent,
        )
        return AttachTarget(process_name=self.process_name)

    async def finish(self, correlator: ResultCorrelator) -> RunSummary:
        """Mark every debugged leaf passed; there is no result log to read."""
        summary = RunSummary()
        for leaf in self.plan.leaves:
            self.run.passed(leaf)
            summary = summary.record("Passed")
        log.info(
            "Marked %d test(s) passed after debugging %s",
            len(self.plan.leaves),
            self.plan.name,
        )
        return summary
