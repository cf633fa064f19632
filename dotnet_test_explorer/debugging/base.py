"""Abstract base class for debug launch strategies."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from dotnet_test_explorer import process
from dotnet_test_explorer.config import ExplorerConfig
from dotnet_test_explorer.debugging.host import AttachTarget, StrategyName
from dotnet_test_explorer.exceptions import ProcessExitedError, ReadinessTimeoutError
from dotnet_test_explorer.models.result import RunSummary
from dotnet_test_explorer.models.run import TestRun
from dotnet_test_explorer.orchestrator import GroupPlan
from dotnet_test_explorer.process import RunningProcess
from dotnet_test_explorer.results.correlator import ResultCorrelator

log = logging.getLogger(__name__)


async def until_cancelled[T](
    awaitable: Awaitable[T], cancel: asyncio.Event
) -> asyncio.Future[T]:
    """Await ``awaitable`` unless ``cancel`` is set first.

    Returns:
        The finished future; it is cancelled if ``cancel`` won the race

    """
    task = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    return task


@dataclass(kw_only=True)
class LaunchStrategy(ABC):
    """One way of starting a group's tests so a debugger can attach.

    A strategy starts a process that pauses until a debugger attaches,
    reports where to attach, and after the debug session folds whatever
    results it has into the run.
    """

    name: ClassVar[StrategyName]

    config: ExplorerConfig
    plan: GroupPlan
    run: TestRun
    running: RunningProcess | None = field(default=None, init=False, repr=False)

    @abstractmethod
    async def prepare_and_wait_for_attachable(self) -> AttachTarget:
        """Launch the test process and wait until it can be attached to.

        Returns:
            Where the debugger should attach

        Raises:
            ReadinessTimeoutError: If no readiness signal arrives in time
            ProcessExitedError: If the process exits before signalling
            ProcessLaunchError: If the process cannot be started

        """

    @abstractmethod
    async def finish(self, correlator: ResultCorrelator) -> RunSummary:
        """Fold the results of the finished debug session into the run.

        Args:
            correlator: Correlator bound to the run and tree

        Returns:
            Summary of the group's results

        """

    def kill(self) -> None:
        """Kill the launched process tree if it is still running."""
        if self.running is not None:
            self.running.kill_tree()

    async def _launch_until_ready(
        self,
        command: str,
        args: Sequence[str],
        ready: re.Pattern[str],
        *,
        cwd: Path | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> re.Match[str]:
        """Start a process and wait for an output line matching ``ready``.

        Output keeps streaming into the run log after readiness. On timeout
        the process tree is killed before raising.
        """
        loop = asyncio.get_running_loop()
        signal: asyncio.Future[re.Match[str]] = loop.create_future()

        def on_line(line: str) -> None:
            self.run.append_line(line)
            if not signal.done() and (match := ready.search(line)):
                signal.set_result(match)

        self.running = await process.start(
            command,
            args,
            cwd=cwd,
            extra_env=extra_env,
            on_stdout=on_line,
            on_stderr=on_line,
        )
        exited = asyncio.ensure_future(self.running.process.wait())
        try:
            await asyncio.wait(
                {signal, exited},
                timeout=self.config.readiness_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if exited.done() and not signal.done():
                # Lines written just before exit may still be in flight
                await self.running.pump
        finally:
            exited.cancel()

        if signal.done():
            match = signal.result()
            log.info("%s is ready for attach: %s", self.name, match.group(0))
            return match

        if self.running.returncode is not None:
            log.warning(
                "%s exited with code %d before signalling readiness",
                command,
                self.running.returncode,
            )
            raise ProcessExitedError(self.running.returncode)

        log.warning(
            "No readiness signal from %s within %gs",
            command,
            self.config.readiness_timeout,
        )
        self.running.kill_tree()
        raise ReadinessTimeoutError(self.config.readiness_timeout)
