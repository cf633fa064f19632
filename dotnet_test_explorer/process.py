"""External process adapter with line streaming and process-tree cancellation."""

import asyncio
import codecs
import contextlib
import logging
import os
import re
import signal
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import psutil

from dotnet_test_explorer.exceptions import ProcessLaunchError
from dotnet_test_explorer.models.result import ProcessResult

log = logging.getLogger(__name__)

type LineCallback = Callable[[str], None]

_LINE_BREAK = re.compile(r"\r?\n")
_READ_SIZE = 4096


class LineSplitter:
    """Split a stream of text chunks into complete lines.

    ``feed`` returns the complete lines contained in the data seen so far and
    keeps the trailing partial line buffered; ``flush`` releases it once the
    stream is finished. Empty lines are dropped. Use one splitter per stream.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> Iterator[str]:
        """Buffer ``chunk`` and iterate the lines it completed."""
        *lines, self._buffer = _LINE_BREAK.split(self._buffer + chunk)
        return (line for line in lines if line)

    def flush(self) -> Iterator[str]:
        """Iterate the trailing partial line, if any, and reset."""
        remainder, self._buffer = self._buffer.rstrip("\r"), ""
        return iter([remainder] if remainder else [])


def kill_process_tree(pid: int) -> None:
    """Kill ``pid`` and every descendant process."""
    try:
        root = psutil.Process(pid)
        victims = [*root.children(recursive=True), root]
    except psutil.NoSuchProcess:
        return

    for proc in victims:
        # Already exited is fine
        with contextlib.suppress(psutil.NoSuchProcess):
            proc.kill()
    log.debug(
        "Killed process tree rooted at pid=%d (%d process(es))", pid, len(victims)
    )


def kill_process_group(pgid: int) -> None:
    """Kill every process left in a session group created by ``start``."""
    if os.name == "nt":
        return
    try:
        os.killpg(pgid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        return
    log.debug("Killed process group %d", pgid)


async def _pump(
    stream: asyncio.StreamReader | None,
    label: str,
    callback: LineCallback | None,
) -> str:
    """Forward every line of ``stream`` to the log and ``callback``."""
    if stream is None:
        return ""

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    splitter = LineSplitter()
    collected: list[str] = []

    def deliver(lines: Iterator[str]) -> None:
        for line in lines:
            log.debug("[%s] %s", label, line)
            if callback is not None:
                callback(line)

    while chunk := await stream.read(_READ_SIZE):
        text = decoder.decode(chunk)
        collected.append(text)
        deliver(splitter.feed(text))

    tail = decoder.decode(b"", final=True)
    collected.append(tail)
    deliver(splitter.feed(tail))
    deliver(splitter.flush())
    return "".join(collected)


@dataclass(kw_only=True)
class RunningProcess:
    """A started child process whose output is being streamed."""

    command: str
    process: asyncio.subprocess.Process = field(repr=False)
    pump: "asyncio.Future[list[str]]" = field(repr=False)

    @property
    def pid(self) -> int:
        """Return the OS process id."""
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        """Return the exit code, or None while running."""
        return self.process.returncode

    def kill_tree(self) -> None:
        """Kill the process and all of its descendants.

        Descendants orphaned by an exited process are still in its group.
        """
        if self.process.returncode is None:
            log.info("Killing process tree of %s (pid=%d)", self.command, self.pid)
            kill_process_tree(self.pid)
        kill_process_group(self.pid)

    async def wait(self) -> ProcessResult:
        """Wait for exit and for both output streams to drain."""
        exit_code = await self.process.wait()
        stdout, stderr = await self.pump
        return ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

    async def wait_or_cancel(self, cancel: asyncio.Event) -> ProcessResult:
        """Wait for exit, killing the process tree if ``cancel`` is set first.

        A cancelled process still resolves to a result; callers check the
        event to tell cancellation apart from an ordinary exit.
        """
        wait_task = asyncio.ensure_future(self.wait())
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {wait_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            self.kill_tree()
            wait_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if wait_task not in done:
            log.info("Cancellation requested for %s", self.command)
            self.kill_tree()
        return await wait_task


async def start(
    command: str,
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    extra_env: Mapping[str, str] | None = None,
    on_stdout: LineCallback | None = None,
    on_stderr: LineCallback | None = None,
) -> RunningProcess:
    """Start a process and stream its output without waiting for exit.

    Raises:
        ProcessLaunchError: If the operating system cannot start the process

    """
    env = {**os.environ, **extra_env} if extra_env else None
    log.info("Spawning: %s %s", command, " ".join(args))
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            # Own process group so the whole tree can be signalled
            start_new_session=os.name != "nt",
        )
    except OSError as e:
        raise ProcessLaunchError(command, e) from e

    pump = asyncio.gather(
        _pump(process.stdout, "stdout", on_stdout),
        _pump(process.stderr, "stderr", on_stderr),
    )
    return RunningProcess(command=command, process=process, pump=pump)


async def spawn(
    command: str,
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    extra_env: Mapping[str, str] | None = None,
    on_stdout: LineCallback | None = None,
    on_stderr: LineCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> ProcessResult:
    """Run a process to completion, streaming output line by line.

    A non-zero exit code is not an error; callers inspect ``exit_code``.

    Raises:
        ProcessLaunchError: If the operating system cannot start the process

    """
    running = await start(
        command,
        args,
        cwd=cwd,
        extra_env=extra_env,
        on_stdout=on_stdout,
        on_stderr=on_stderr,
    )
    if cancel is None:
        result = await running.wait()
    else:
        result = await running.wait_or_cancel(cancel)

    log.info("%s exited with code %d", command, result.exit_code)
    return result
