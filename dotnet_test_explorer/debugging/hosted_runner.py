"""Launch strategy for test projects run inside the platform's test host."""

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from dotnet_test_explorer.debugging.base import LaunchStrategy
from dotnet_test_explorer.debugging.host import AttachTarget
from dotnet_test_explorer.dotnet import DotnetTestOptions, dotnet_test_args
from dotnet_test_explorer.exceptions import ResultLogNotFoundError
from dotnet_test_explorer.filtering import build_filter
from dotnet_test_explorer.models.result import RunSummary
from dotnet_test_explorer.results.correlator import ResultCorrelator
from dotnet_test_explorer.results.locator import find_result_log
from dotnet_test_explorer.results.trx import load_trx

log = logging.getLogger(__name__)

PROCESS_ID_PATTERN = re.compile(r"Process Id:\s*(\d+)", re.IGNORECASE)

DEBUG_ENVIRONMENT = {
    # Test host pauses and prints its process id until a debugger attaches
    "VSTEST_HOST_DEBUG": "1",
    # Without this the host forces a break right after attach
    "VSTEST_DEBUG_NOBP": "1",
}


@dataclass(kw_only=True)
class HostedRunnerStrategy(LaunchStrategy):
    """Runs ``dotnet test`` with the test host waiting for a debugger.

    The host prints its process id, which is the attach target. The
    invocation writes a result log that is correlated after the session.
    """

    name = "HostedRunner"

    results_directory: Path
    log_file_prefix: str

    def runner_options(self) -> DotnetTestOptions:
        """Build the ``dotnet test`` options for this group."""
        return DotnetTestOptions(
            project_path=self.plan.project_path,
            results_directory=self.results_directory,
            log_file_prefix=self.log_file_prefix,
            configuration=self.config.configuration,
            filter=None if self.plan.run_all else build_filter(self.plan.items),
            no_build=True,
        )

    async def prepare_and_wait_for_attachable(self) -> AttachTarget:
        """Start ``dotnet test`` and wait for the test host's process id."""
        options = self.runner_options()
        if options.filter:
            self.run.append_line(f"Filter: {options.filter}")
        self.run.append_line("Starting test host... waiting for debugger attachment.")

        match = await self._launch_until_ready(
            self.config.dotnet_path,
            dotnet_test_args(options),
            PROCESS_ID_PATTERN,
            cwd=self.plan.project_path.parent,
            extra_env=DEBUG_ENVIRONMENT,
        )
        return AttachTarget(pid=int(match.group(1)))

    async def finish(self, correlator: ResultCorrelator) -> RunSummary:
        """Wait for the runner to write its result log, then correlate it.

        Raises:
            ResultLogNotFoundError: If the runner produced no result log
            ResultLogParseError: If the result log is malformed

        """
        if self.running is not None:
            try:
                await asyncio.wait_for(
                    self.running.wait(), timeout=self.config.result_wait_timeout
                )
            except TimeoutError:
                log.warning(
                    "Test runner still running %gs after the debug session ended",
                    self.config.result_wait_timeout,
                )
                self.kill()

        trx_path = find_result_log(self.results_directory, self.log_file_prefix)
        if trx_path is None:
            raise ResultLogNotFoundError(
                f"No test results (TRX) were produced while debugging {self.plan.name}"
            )

        document = await load_trx(trx_path)
        log.info("Parsed %d test result(s) from %s", len(document), trx_path.name)
        self.run.append_line(f"Parsed {len(document)} test result(s)")
        return correlator.apply(document.outcomes(), self.plan.leaves)
