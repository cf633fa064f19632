"""Exception-breakpoint rewriting and the process-wide interceptor registry.

The test framework raises and handles a file-not-found exception inside its
own startup code on every attach. With "break on all exceptions" enabled the
debugger stops there before any test runs. The wire protocol can only scope
exception options by type name, not by assembly, so the override applies to
every exception of that type in the session.
"""

import contextlib
import logging
import threading
from collections.abc import Iterator
from typing import Any, ClassVar, Self

from dotnet_test_explorer.dap.messages import Request
from dotnet_test_explorer.dap.proxy import Message, ProtocolMiddleware
from dotnet_test_explorer.debugging.host import DebuggerHost

log = logging.getLogger(__name__)

NEVER_BREAK = "never"


def _names_type(segment: Any, exception_type: str) -> bool:
    return (
        isinstance(segment, dict)
        and not segment.get("negate", False)
        and exception_type in (segment.get("names") or ())
    )


def _split_out_type(option: Any, exception_type: str) -> Any | None:
    """Remove ``exception_type`` from the names an option applies to.

    Returns None when the option covered nothing but that type.
    """
    if not isinstance(option, dict):
        return option

    path: list[Any] = []
    for segment in option.get("path") or ():
        if _names_type(segment, exception_type):
            names = [name for name in segment["names"] if name != exception_type]
            if not names:
                return None
            segment = {**segment, "names": names}
        path.append(segment)
    return {**option, "path": path} if "path" in option else option


def suppress_exception_type(
    arguments: dict[str, Any] | None, exception_type: str
) -> dict[str, Any]:
    """Return ``setExceptionBreakpoints`` arguments that never break on a type.

    Existing filters are kept. Options that name the type alongside others
    keep their break mode for the other types; the type itself moves into a
    separate option appended last.
    """
    updated = dict(arguments or {})
    updated.setdefault("filters", [])

    options: list[Any] = []
    for option in updated.get("exceptionOptions") or ():
        if (kept := _split_out_type(option, exception_type)) is not None:
            options.append(kept)
    options.append({"path": [{"names": [exception_type]}], "breakMode": NEVER_BREAK})
    updated["exceptionOptions"] = options
    return updated


class ExceptionFilterOverride(ProtocolMiddleware):
    """Stops the debugger breaking on one exception type."""

    def __init__(self, exception_type: str) -> None:
        self.exception_type = exception_type

    def on_will_receive_message(self, message: Message) -> Message:
        """Rewrite outgoing ``setExceptionBreakpoints`` requests."""
        match message:
            case Request(command="setExceptionBreakpoints", arguments=arguments):
                log.info("Suppressing breaks on %s", self.exception_type)
                return message.model_copy(
                    update={
                        "arguments": suppress_exception_type(
                            arguments, self.exception_type
                        )
                    }
                )
            case _:
                return message


class InterceptorRegistry:
    """Process-wide table of per-session middleware.

    A debugger host consults the registry through the tracker factory it
    was given once. Sessions install their middleware by name for as long
    as they run.
    """

    _instance: ClassVar["InterceptorRegistry | None"] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._middleware: dict[str, ProtocolMiddleware] = {}
        self._hosts: list[DebuggerHost] = []

    @classmethod
    def instance(cls) -> Self:
        """Return the shared registry, creating it on first use."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def ensure_registered(self, host: DebuggerHost) -> None:
        """Register the tracker factory with ``host`` exactly once."""
        with self._lock:
            if any(registered is host for registered in self._hosts):
                return
            host.register_tracker_factory(self.tracker_for)
            self._hosts.append(host)
        log.debug("Registered interceptor tracker factory with %r", host)

    def tracker_for(self, session_name: str) -> ProtocolMiddleware | None:
        """Return the middleware installed for a session, if any."""
        with self._lock:
            return self._middleware.get(session_name)

    @contextlib.contextmanager
    def install(
        self, session_name: str, middleware: ProtocolMiddleware
    ) -> Iterator[ProtocolMiddleware]:
        """Install ``middleware`` for ``session_name`` until the block exits."""
        with self._lock:
            self._middleware[session_name] = middleware
        try:
            yield middleware
        finally:
            with self._lock:
                self._middleware.pop(session_name, None)
            log.debug("Removed interceptor for %s", session_name)
