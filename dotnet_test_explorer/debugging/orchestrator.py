"""Debug orchestrator: launch, attach, intercept, and fold in results."""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dotnet_test_explorer.debugging.base import LaunchStrategy, until_cancelled
from dotnet_test_explorer.debugging.direct_executable import DirectExecutableStrategy
from dotnet_test_explorer.debugging.host import DebuggerHost, DebugSession
from dotnet_test_explorer.debugging.hosted_runner import HostedRunnerStrategy
from dotnet_test_explorer.debugging.interceptor import (
    ExceptionFilterOverride,
    InterceptorRegistry,
)
from dotnet_test_explorer.debugging.build_output import find_direct_executable
from dotnet_test_explorer.dotnet import build_project
from dotnet_test_explorer.exceptions import BuildFailedError, DebugAttachError
from dotnet_test_explorer.models.result import RunSummary
from dotnet_test_explorer.models.run import RunRequest, TestRun
from dotnet_test_explorer.orchestrator import (
    GroupPlan,
    GroupResult,
    RunOrchestrator,
    append_summary_block,
    error_leaves,
    skip_leaves,
)
from dotnet_test_explorer.results.correlator import ResultCorrelator

log = logging.getLogger(__name__)

BUILD_FAILED_MESSAGE = "Build failed before debug run"
ATTACH_FAILED_MESSAGE = "Failed to attach debugger"


@dataclass(frozen=True, kw_only=True)
class DebugOrchestrator(RunOrchestrator):
    """Debugs requested tests one group at a time.

    Each group is built, launched paused, attached to by the debugger host
    under a uniquely named session, and folded back into the run once the
    session ends. Failures stay local to their group.
    """

    verb = "Debugging"

    host: DebuggerHost
    registry: InterceptorRegistry = field(default_factory=InterceptorRegistry.instance)

    async def debug_tests(
        self, request: RunRequest, run: TestRun
    ) -> Sequence[GroupResult]:
        """Debug the requested tests.

        Args:
            request: Included/excluded items and the cancellation event
            run: Sink receiving state transitions and the run log

        Returns:
            One result per group whose session completed

        """
        self.registry.ensure_registered(self.host)
        return await self.run_tests(request, run)

    async def select_strategy(
        self,
        plan: GroupPlan,
        run: TestRun,
        results_directory: Path,
        log_file_prefix: str,
    ) -> LaunchStrategy:
        """Pick the launch strategy by probing the group's build output."""
        executable = await asyncio.to_thread(
            find_direct_executable, plan.project_path, self.config.configuration
        )
        if executable is not None:
            return DirectExecutableStrategy(
                config=self.config, plan=plan, run=run, executable=executable
            )
        return HostedRunnerStrategy(
            config=self.config,
            plan=plan,
            run=run,
            results_directory=results_directory,
            log_file_prefix=log_file_prefix,
        )

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
        """Build, launch, attach to and collect one group."""
        for leaf in plan.leaves:
            run.enqueued(leaf)
        started = time.monotonic()

        try:
            await build_project(
                self.config, plan.project_path, run, cancel=request.cancel
            )
        except BuildFailedError as e:
            if request.is_cancelled:
                return self._cancelled(plan, run)
            log.error("Build failed before debugging %s: %s", plan.name, e)
            run.append_line(BUILD_FAILED_MESSAGE)
            error_leaves(plan, run, BUILD_FAILED_MESSAGE)
            return None

        if request.is_cancelled:
            return self._cancelled(plan, run)

        strategy = await self.select_strategy(
            plan, run, results_directory, f"debug-run-{index}"
        )
        log.info("Debugging %s with the %s strategy", plan.name, strategy.name)
        run.append_line("")
        run.append_line(f"=== Debugging tests in {plan.name} ===")
        for leaf in plan.leaves:
            run.started(leaf)

        try:
            summary = await self._debug_with(strategy, plan, request, run, correlator)
        finally:
            strategy.kill()

        if summary is None:
            return self._cancelled(plan, run)

        total_time_ms = (time.monotonic() - started) * 1000
        append_summary_block(
            run, summary, total_time_ms, plan.name if labelled else None
        )
        return GroupResult(
            group_id=plan.group.id,
            name=plan.name,
            summary=summary,
            total_time_ms=total_time_ms,
        )

    async def _debug_with(
        self,
        strategy: LaunchStrategy,
        plan: GroupPlan,
        request: RunRequest,
        run: TestRun,
        correlator: ResultCorrelator,
    ) -> RunSummary | None:
        ready = await until_cancelled(
            strategy.prepare_and_wait_for_attachable(), request.cancel
        )
        if ready.cancelled():
            return None

        session = DebugSession.for_group(
            prefix=self.config.session_name_prefix,
            group_name=plan.name,
            strategy=strategy.name,
            target=ready.result(),
            debugger_type=self.config.debugger_type,
        )
        run.append_line(f"Attaching debugger to {session.target.label}...")

        interceptor = ExceptionFilterOverride(self.config.suppressed_exception_type)
        with self.registry.install(session.name, interceptor):
            await self._attach(session)
            session_ended = False
            try:
                terminated = await until_cancelled(
                    self.host.wait_for_termination(session.name), request.cancel
                )
                if not terminated.cancelled():
                    terminated.result()
                    session_ended = True
            finally:
                if not session_ended:
                    log.info("Stopping debug session %s", session.name)
                    await self.host.stop_debugging(session.name)

        if request.is_cancelled:
            return None

        log.info("Debug session %s ended, collecting results", session.name)
        run.append_line("Debug session ended.")
        return await strategy.finish(correlator)

    async def _attach(self, session: DebugSession) -> None:
        log.info("Attaching %s", session.name)
        try:
            started = await self.host.start_debugging(session.attach_configuration())
        except Exception as e:
            log.error("Debugger host failed to start %s", session.name, exc_info=e)
            raise DebugAttachError(ATTACH_FAILED_MESSAGE) from e
        if not started:
            log.error("Debugger host refused to start %s", session.name)
            raise DebugAttachError(ATTACH_FAILED_MESSAGE)

    @staticmethod
    def _cancelled(plan: GroupPlan, run: TestRun) -> None:
        log.info("Debugging cancelled in %s", plan.name)
        run.append_line("Test run cancelled")
        skip_leaves(plan, run)
