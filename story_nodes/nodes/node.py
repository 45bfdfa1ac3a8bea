"""Dialogue nodes: cached units of streamed generation keyed by prompt.

A node owns the messages produced for one exact prompt. It starts a
MessageStream, appends every assembled message, forwards it to the cache
while it is the node the consumer listens to, and completes as soon as
the player speaks: the rest of the stream is handed to a continuation
node whose prompt is this node's prompt plus its transcript, and the two
player options are filled in by the choice generator.

Lifecycle:

    CREATED -> STREAMING -> COMPLETING -> COMPLETE
               STREAMING -> ABANDONED    (stream ended with nothing collected)
               COMPLETING -> ABANDONED   (player options could not be generated)

Handlers bound to a completed node are delegated to the tail of its
continuation chain, so stale references still reach the live node.
"""

from __future__ import annotations

import asyncio
import enum
import hashlib
import logging
from typing import TYPE_CHECKING

from story_nodes.models import ChatMsg
from story_nodes.streaming.client import StreamEndReason
from story_nodes.streaming.messages import MessageStream
from story_nodes.transcript import messages_to_lines

if TYPE_CHECKING:
    from story_nodes.nodes.cache import NodeCache

logger = logging.getLogger(__name__)

HASH_LENGTH = 10


def hash_prompt(prompt: str) -> str:
    """Cache key for a prompt: the first 10 hex digits of its SHA-256."""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:HASH_LENGTH]


class NodeState(enum.Enum):
    CREATED = "created"
    STREAMING = "streaming"
    COMPLETING = "completing"
    COMPLETE = "complete"
    ABANDONED = "abandoned"


class DialogueNode:
    """One point of the dialogue tree.

    Args:
        prompt:           Full text sent to the generator for this node.
        story_context:    Story name / context the caller tagged it with.
        cache:            Owning NodeCache; supplies the player name, the
                          choice generator and new message streams.
        is_continuation:  True for nodes that only extend a predecessor's
                          stream. They cache but never forward on their own.
    """

    def __init__(
        self,
        prompt: str,
        story_context: str,
        cache: NodeCache,
        *,
        is_continuation: bool = False,
    ) -> None:
        self.prompt = prompt
        self.hash = hash_prompt(prompt)
        self.story_context = story_context
        self.messages: list[ChatMsg] = []
        self.continuation_node: DialogueNode | None = None
        self.is_continuation = is_continuation
        self.state = NodeState.CREATED
        self.forwarding = not is_continuation
        self._cache = cache
        self._stream: MessageStream | None = None

    def __repr__(self) -> str:
        return f"<DialogueNode {self.hash} {self.state.value} messages={len(self.messages)}>"

    @property
    def is_streaming(self) -> bool:
        return self._stream is not None and self._stream.is_streaming

    def tail(self) -> DialogueNode:
        """Last node of the continuation chain (self when not yet continued)."""
        node = self
        while node.continuation_node is not None:
            node = node.continuation_node
        return node

    def next_prompt(self) -> str:
        return self.prompt + messages_to_lines(self.messages)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def start_new_stream_messages(self, character_names: list[str]) -> asyncio.Task:
        if self.state is not NodeState.CREATED:
            raise NodeLifecycleError(
                f"Node {self.hash} cannot start streaming from state {self.state.value}"
            )
        self.state = NodeState.STREAMING
        logger.info("node %s streaming (cast: %s)", self.hash, ", ".join(character_names))
        self._attach_stream(self._cache.open_stream(character_names))
        return await self._stream.start_stream(self.prompt)

    async def handle_streamed_message(self, message: ChatMsg) -> None:
        target = self.tail()
        if target is not self:
            logger.debug("node %s delegating message to %s", self.hash, target.hash)
        await target._receive(message)

    async def handle_stream_ended(self, reason: StreamEndReason) -> None:
        target = self.tail()
        if target is not self:
            logger.debug("node %s delegating stream end to %s", self.hash, target.hash)
        await target._stream_ended(reason)

    async def cancel(self) -> None:
        """Cancel the stream feeding this node's lineage, if any."""
        stream = self.tail()._stream
        if stream is not None:
            await stream.cancel_stream()

    def add_message(self, message: ChatMsg) -> None:
        """Append a message without forwarding it or completing the node."""
        self.messages.append(message)

    # ------------------------------------------------------------------
    # Cache-driven transitions
    # ------------------------------------------------------------------

    def detach(self) -> None:
        """Stop forwarding. The stream keeps running and keeps filling the cache."""
        if self.forwarding:
            logger.debug("node %s detached", self.hash)
        self.forwarding = False

    def follow(self) -> None:
        """Forward whatever this node receives from now on."""
        self.forwarding = True

    def attach_as_continuation(self) -> None:
        if self.state is not NodeState.CREATED:
            raise NodeLifecycleError(
                f"Node {self.hash} in state {self.state.value} cannot become a continuation"
            )
        self.is_continuation = True
        self.forwarding = False
        self.state = NodeState.STREAMING

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete_node(self, create_continuation: bool = True) -> None:
        """Finish this node with two trailing player options.

        With create_continuation the continuation is built and registered
        before the first await, so messages arriving while the options are
        generated already land on it.
        """
        if self.state is not NodeState.STREAMING:
            raise NodeLifecycleError(
                f"Cannot complete node {self.hash} in state {self.state.value}"
            )
        self.state = NodeState.COMPLETING
        stream = self._release_stream()

        if create_continuation:
            candidate = DialogueNode(self.next_prompt(), self.story_context, self._cache, is_continuation=True)
            self.continuation_node = self._cache.register_continuation(candidate)
            if stream is not None:
                self.continuation_node._attach_stream(stream)
            logger.info("node %s continued by %s", self.hash, self.continuation_node.hash)

        player = self._cache.player_name
        trailing = 0
        for message in reversed(self.messages):
            if not message.is_from(player):
                break
            trailing += 1

        choices = self._cache.choices
        try:
            if trailing == 0:
                self._append(await choices.player_response(self.prompt, self.messages, player))
                trailing = 1
            if trailing == 1:
                self._append(await choices.alternative_response(self.prompt, self.messages, player))
        except Exception:
            logger.error("node %s: generating player options failed", self.hash)
            # the continuation chain hangs off this node and goes with it
            live = self.tail()._stream
            node: DialogueNode | None = self
            while node is not None:
                node._abandon()
                node = node.continuation_node
            if live is not None:
                await live.cancel_stream()
            raise

        self.state = NodeState.COMPLETE
        logger.info("node %s complete with %d messages", self.hash, len(self.messages))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _receive(self, message: ChatMsg) -> None:
        if self.state is not NodeState.STREAMING:
            logger.warning("node %s (%s) dropped %s", self.hash, self.state.value, message)
            return
        self._append(message)
        if message.is_from(self._cache.player_name):
            await self.complete_node()

    async def _stream_ended(self, reason: StreamEndReason) -> None:
        logger.info(
            "node %s stream ended: %s with %d messages", self.hash, reason.value, len(self.messages)
        )
        if self.state is not NodeState.STREAMING:
            return
        if not self.messages:
            self._abandon()
            return
        await self.complete_node(create_continuation=False)

    def _abandon(self) -> None:
        self.state = NodeState.ABANDONED
        self._release_stream()
        self._cache.remove_node(self.hash, node=self)
        logger.info("node %s abandoned", self.hash)

    def _append(self, message: ChatMsg) -> None:
        self.messages.append(message)
        if self.forwarding:
            self._cache.handle_streamed_message(message)

    def _attach_stream(self, stream: MessageStream) -> None:
        self._stream = stream
        stream.bind(self.handle_streamed_message, self.handle_stream_ended)

    def _release_stream(self) -> MessageStream | None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.unbind()
        return stream


class NodeLifecycleError(RuntimeError):
    """A node or the cache was driven against its lifecycle."""
