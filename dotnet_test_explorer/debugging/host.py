"""Contract for the external IDE debugger and the sessions started on it."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, Self

from dotnet_test_explorer.dap.proxy import ProtocolMiddleware

type StrategyName = Literal["DirectExecutable", "HostedRunner"]

# Maps a session name to the middleware for that session, if any
type TrackerFactory = Callable[[str], ProtocolMiddleware | None]


@dataclass(frozen=True, kw_only=True)
class AttachTarget:
    """Where the debugger attaches: a process id or a process name."""

    pid: int | None = None
    process_name: str | None = None

    def __post_init__(self) -> None:
        if (self.pid is None) == (self.process_name is None):
            raise ValueError("AttachTarget needs exactly one of pid or process_name")

    @property
    def label(self) -> str:
        """Return the target as shown in session names."""
        return str(self.pid) if self.pid is not None else str(self.process_name)


@dataclass(frozen=True, kw_only=True)
class DebugSession:
    """One debug session attached to one group's test process."""

    name: str
    strategy: StrategyName
    target: AttachTarget
    debugger_type: str = "coreclr"

    @classmethod
    def for_group(
        cls,
        *,
        prefix: str,
        group_name: str,
        strategy: StrategyName,
        target: AttachTarget,
        debugger_type: str = "coreclr",
    ) -> Self:
        """Create a session whose name is unique per group and process."""
        return cls(
            name=f"{prefix}: {group_name} ({target.label})",
            strategy=strategy,
            target=target,
            debugger_type=debugger_type,
        )

    def attach_configuration(self) -> dict[str, Any]:
        """Build the attach configuration handed to the debugger host."""
        config: dict[str, Any] = {
            "type": self.debugger_type,
            "request": "attach",
            "name": self.name,
        }
        if self.target.pid is not None:
            config["processId"] = self.target.pid
        else:
            config["processName"] = self.target.process_name
        config["justMyCode"] = False
        return config


class DebuggerHost(ABC):
    """The IDE's debugger, driven by session name.

    The runtime core never implements a debugger. It asks the host to
    attach, waits for the session to end, and stops only sessions it
    started.
    """

    @abstractmethod
    async def start_debugging(self, config: dict[str, Any]) -> bool:
        """Start a debug session.

        Args:
            config: Attach configuration, including the session ``name``

        Returns:
            True if the session started

        """

    @abstractmethod
    async def stop_debugging(self, session_name: str) -> None:
        """Stop the named session if it is still running."""

    @abstractmethod
    async def wait_for_termination(self, session_name: str) -> None:
        """Wait until the named session terminates."""

    @abstractmethod
    def register_tracker_factory(self, factory: TrackerFactory) -> None:
        """Register a factory consulted for each new session's middleware."""
