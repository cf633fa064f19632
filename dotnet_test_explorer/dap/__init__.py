"""Debug Adapter Protocol messages, framing and relay."""

from dotnet_test_explorer.dap.messages import (
    Event,
    ProtocolMessage,
    Request,
    Response,
    parse_message,
)
from dotnet_test_explorer.dap.proxy import DebugAdapterProxy, ProtocolMiddleware

__all__ = [
    "DebugAdapterProxy",
    "Event",
    "ProtocolMessage",
    "ProtocolMiddleware",
    "Request",
    "Response",
    "parse_message",
]
