"""Relay between a debug client and a debug adapter with message middleware."""

import asyncio
import logging
from abc import ABC
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from dotnet_test_explorer.dap.framing import encode_message, read_message
from dotnet_test_explorer.dap.messages import (
    Event,
    Request,
    Response,
    describe,
    parse_message,
    to_wire,
)

log = logging.getLogger(__name__)

type Message = Request | Response | Event


class ProtocolMiddleware(ABC):
    """Observes and rewrites debug adapter traffic for one session.

    Both hooks return the message to forward. Returning the message object
    itself forwards the original payload as received.
    """

    def on_will_receive_message(self, message: Message) -> Message:
        """Handle a message travelling from the client to the adapter."""
        return message

    def on_did_send_message(self, message: Message) -> Message:
        """Handle a message travelling from the adapter to the client."""
        return message


def apply_middleware(
    raw: dict[str, Any],
    hooks: Sequence[Callable[[Message], Message]],
) -> dict[str, Any]:
    """Run ``raw`` through ``hooks`` in order.

    Messages that do not validate as a request, response or event are
    forwarded as they are.
    """
    try:
        original = parse_message(raw)
    except ValidationError:
        log.debug("Relaying unrecognized message untouched: %s", raw.get("type"))
        return raw

    message = original
    for hook in hooks:
        message = hook(message)
    if message is original:
        return raw

    log.debug("Rewrote %s", describe(message))
    return to_wire(message)


@dataclass(kw_only=True)
class DebugAdapterProxy:
    """Relays framed messages between a client and an adapter stream pair.

    Runs until either side closes its stream, then closes both writers.
    """

    client_reader: asyncio.StreamReader = field(repr=False)
    client_writer: asyncio.StreamWriter = field(repr=False)
    adapter_reader: asyncio.StreamReader = field(repr=False)
    adapter_writer: asyncio.StreamWriter = field(repr=False)
    middleware: Sequence[ProtocolMiddleware] = ()

    async def run(self) -> None:
        """Relay traffic in both directions until one side closes.

        Raises:
            ProtocolFramingError: If either side sends a malformed message

        """
        to_adapter = asyncio.ensure_future(
            self._relay(
                self.client_reader,
                self.adapter_writer,
                [mw.on_will_receive_message for mw in self.middleware],
            )
        )
        to_client = asyncio.ensure_future(
            self._relay(
                self.adapter_reader,
                self.client_writer,
                [mw.on_did_send_message for mw in self.middleware],
            )
        )
        tasks = {to_adapter, to_client}
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.client_writer.close()
            self.adapter_writer.close()

        for task in done:
            task.result()

    @staticmethod
    async def _relay(
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        hooks: Sequence[Callable[[Message], Message]],
    ) -> None:
        while (raw := await read_message(reader)) is not None:
            writer.write(encode_message(apply_middleware(raw, hooks)))
            await writer.drain()
