r"""``Content-Length`` framing for debug adapter traffic.

Each message is a header block terminated by an empty line, followed by
exactly ``Content-Length`` bytes of UTF-8 JSON::

    Content-Length: 119\r\n
    \r\n
    {"seq": 1, "type": "request", ...}
"""

import asyncio
import json
from collections.abc import Mapping
from typing import Any

from dotnet_test_explorer.exceptions import ProtocolFramingError

HEADER_TERMINATOR = b"\r\n\r\n"
CONTENT_LENGTH = "content-length"


def encode_message(message: Mapping[str, Any]) -> bytes:
    """Serialize and frame one message."""
    content = json.dumps(message, separators=(",", ":")).encode("utf-8")
    header = f"Content-Length: {len(content)}\r\n\r\n"
    return header.encode("ascii") + content


def parse_content_length(header: bytes) -> int:
    """Extract the body length from a raw header block.

    Raises:
        ProtocolFramingError: If the header is not ASCII, contains a line
            without a colon, or lacks a valid ``Content-Length``

    """
    try:
        text = header.decode("ascii")
    except UnicodeDecodeError as e:
        raise ProtocolFramingError("Message header is not ASCII") from e

    content_length: int | None = None
    for line in text.split("\r\n"):
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep:
            raise ProtocolFramingError(f"Malformed header line: {line!r}")
        if name.strip().lower() != CONTENT_LENGTH:
            continue
        try:
            content_length = int(value.strip())
        except ValueError as e:
            raise ProtocolFramingError(
                f"Invalid Content-Length: {value.strip()!r}"
            ) from e

    if content_length is None:
        raise ProtocolFramingError("Missing Content-Length header")
    if content_length < 0:
        raise ProtocolFramingError(f"Invalid Content-Length: {content_length}")
    return content_length


async def read_message(reader: asyncio.StreamReader) -> dict[str, Any] | None:
    """Read one framed message.

    Args:
        reader: Stream positioned at a message boundary

    Returns:
        The decoded message, or None if the stream ended cleanly between
        messages

    Raises:
        ProtocolFramingError: If the header or body is malformed, or the
            stream ends inside a message

    """
    try:
        header = await reader.readuntil(HEADER_TERMINATOR)
    except asyncio.IncompleteReadError as e:
        if not e.partial.strip():
            return None
        raise ProtocolFramingError("Stream ended inside a message header") from e
    except asyncio.LimitOverrunError as e:
        raise ProtocolFramingError("Message header exceeds the read limit") from e

    content_length = parse_content_length(header)
    try:
        content = await reader.readexactly(content_length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolFramingError(
            f"Stream ended after {len(e.partial)} of {content_length} body bytes"
        ) from e

    try:
        message = json.loads(content)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolFramingError(f"Invalid message body: {e}") from e
    if not isinstance(message, dict):
        raise ProtocolFramingError("Message body is not a JSON object")
    return message
