"""Message stream: a token stream client wired to a message assembler.

Text fragments from the client are assembled into ChatMsg values and
handed to the bound message handler, one at a time, in order. When the
upstream ends on its own the trailing unterminated line is flushed first;
after a cancellation nothing more is delivered. The end reason is then
passed to the bound end handler.

The handlers can be re-bound while the stream runs. A dialogue node uses
that to hand the rest of its stream to its continuation node.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from story_nodes.models import ChatMsg
from story_nodes.streaming.assembler import MessageAssembler
from story_nodes.streaming.client import StreamEndReason

logger = logging.getLogger(__name__)

MessageHandler = Callable[[ChatMsg], Awaitable[None]]
EndHandler = Callable[[StreamEndReason], Awaitable[None]]
ClientFactory = Callable[..., "StreamClient"]


class StreamClient(Protocol):
    """What the message stream needs from its client (see TokenStreamClient)."""

    async def start_stream(self, prompt: str) -> asyncio.Task: ...

    async def cancel_stream(self) -> None: ...


async def _ignore_message(message: ChatMsg) -> None:
    logger.debug("unbound stream dropped %s", message)


async def _ignore_end(reason: StreamEndReason) -> None:
    logger.debug("unbound stream ended: %s", reason.value)


class MessageStream:
    def __init__(
        self,
        player_name: str,
        character_names: list[str],
        client_factory: ClientFactory,
    ) -> None:
        self._assembler = MessageAssembler(player_name, character_names)
        self._client = client_factory(self._handle_content, self._stream_ended)
        self._on_message: MessageHandler = _ignore_message
        self._on_end: EndHandler = _ignore_end
        self.is_streaming = False
        self.task: asyncio.Task | None = None

    def bind(self, on_message: MessageHandler, on_end: EndHandler) -> None:
        self._on_message = on_message
        self._on_end = on_end

    def unbind(self) -> None:
        self._on_message = _ignore_message
        self._on_end = _ignore_end

    async def start_stream(self, prompt: str) -> asyncio.Task:
        if self.is_streaming:
            await self.cancel_stream()
        self._assembler.reset()
        self.is_streaming = True
        self.task = await self._client.start_stream(prompt)
        return self.task

    async def cancel_stream(self) -> None:
        # the client reports USER_CANCELLED back through _stream_ended
        await self._client.cancel_stream()

    async def _handle_content(self, content: str) -> None:
        if not self.is_streaming:
            return
        for message in self._assembler.feed(content):
            if not self.is_streaming:
                logger.debug("dropping %s parsed after cancellation", message)
                break
            await self._on_message(message)

    async def _stream_ended(self, reason: StreamEndReason) -> None:
        if self.is_streaming and reason is not StreamEndReason.USER_CANCELLED:
            for message in self._assembler.flush():
                await self._on_message(message)
        self._assembler.reset()
        self.is_streaming = False
        await self._on_end(reason)
