"""Interactive debugging of test groups through an external debugger host."""

from dotnet_test_explorer.debugging.host import (
    AttachTarget,
    DebuggerHost,
    DebugSession,
)
from dotnet_test_explorer.debugging.interceptor import (
    ExceptionFilterOverride,
    InterceptorRegistry,
)
from dotnet_test_explorer.debugging.orchestrator import DebugOrchestrator

__all__ = [
    "AttachTarget",
    "DebugOrchestrator",
    "DebugSession",
    "DebuggerHost",
    "ExceptionFilterOverride",
    "InterceptorRegistry",
]
