"""Run requests and the run-state sink."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from dotnet_test_explorer.models.tree import SourceLocation, TestNode

type NodeState = Literal[
    "enqueued", "started", "passed", "failed", "skipped", "errored"
]

TERMINAL_STATES: frozenset[NodeState] = frozenset(
    ["passed", "failed", "skipped", "errored"]
)


@dataclass(frozen=True, kw_only=True)
class RunRequest:
    """A user request to run or debug a selection of tree items.

    An empty ``included_ids`` means every root group.
    """

    included_ids: Sequence[str] = ()
    excluded_ids: Sequence[str] = ()
    cancel: asyncio.Event = field(default_factory=asyncio.Event, compare=False)

    @property
    def is_cancelled(self) -> bool:
        """Check whether cancellation was requested."""
        return self.cancel.is_set()


@dataclass(frozen=True, kw_only=True)
class TestMessage:
    """A failure or error message attached to a node."""

    __test__ = False

    message: str
    location: SourceLocation | None = None


class TestRun(ABC):
    """Sink for run-state transitions and the human-readable run log.

    Implemented by the IDE host; the core never renders anything itself.
    """

    __test__ = False

    @abstractmethod
    def enqueued(self, node: TestNode) -> None:
        """Mark a node as waiting to run."""

    @abstractmethod
    def started(self, node: TestNode) -> None:
        """Mark a node as running."""

    @abstractmethod
    def passed(self, node: TestNode, duration_ms: float | None = None) -> None:
        """Mark a node as passed."""

    @abstractmethod
    def failed(
        self,
        node: TestNode,
        message: TestMessage,
        duration_ms: float | None = None,
    ) -> None:
        """Mark a node as failed."""

    @abstractmethod
    def skipped(self, node: TestNode) -> None:
        """Mark a node as skipped."""

    @abstractmethod
    def errored(self, node: TestNode, message: TestMessage) -> None:
        """Mark a node as errored (could not produce a result)."""

    @abstractmethod
    def append_output(self, text: str) -> None:
        """Append raw text to the run log."""

    @abstractmethod
    def end(self) -> None:
        """Signal that the run is complete."""

    def append_line(self, line: str) -> None:
        """Append one line to the run log."""
        self.append_output(f"{line}\r\n")


@dataclass(kw_only=True)
class RecordingTestRun(TestRun):
    """In-memory run that records the latest state of every node."""

    states: dict[str, NodeState] = field(default_factory=dict)
    messages: dict[str, TestMessage] = field(default_factory=dict)
    durations: dict[str, float] = field(default_factory=dict)
    output: list[str] = field(default_factory=list)
    ended: bool = False

    def enqueued(self, node: TestNode) -> None:
        """Record enqueued state."""
        self.states[node.id] = "enqueued"

    def started(self, node: TestNode) -> None:
        """Record started state."""
        self.states[node.id] = "started"

    def passed(self, node: TestNode, duration_ms: float | None = None) -> None:
        """Record passed state."""
        self.states[node.id] = "passed"
        self.messages.pop(node.id, None)
        if duration_ms is not None:
            self.durations[node.id] = duration_ms

    def failed(
        self,
        node: TestNode,
        message: TestMessage,
        duration_ms: float | None = None,
    ) -> None:
        """Record failed state with its message."""
        self.states[node.id] = "failed"
        self.messages[node.id] = message
        if duration_ms is not None:
            self.durations[node.id] = duration_ms

    def skipped(self, node: TestNode) -> None:
        """Record skipped state."""
        self.states[node.id] = "skipped"

    def errored(self, node: TestNode, message: TestMessage) -> None:
        """Record errored state with its message."""
        self.states[node.id] = "errored"
        self.messages[node.id] = message

    def append_output(self, text: str) -> None:
        """Record output text."""
        self.output.append(text)

    def end(self) -> None:
        """Record that the run ended."""
        self.ended = True

    @property
    def transcript(self) -> str:
        """Return the full run log."""
        return "".join(self.output)

    def is_terminal(self, node_id: str) -> bool:
        """Check if a node reached a terminal state."""
        return self.states.get(node_id) in TERMINAL_STATES
