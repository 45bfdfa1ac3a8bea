"""Node cache: prompt hash to DialogueNode, the single entry point for acts.

stream_from_node() either replays a known node's messages with simulated
pacing or creates a node and starts generating. Only one node lineage is
listened to at a time; when the consumer moves on, the previous node is
detached and keeps streaming in the background so that its branch is
still cached.

Every message forwarded to the consumer also advances the current pointer
to a checkpoint node whose prompt is the lineage prompt plus the
transcript so far. Checkpoints are registered in CREATED state and only
start generating when requested later, which makes every message
boundary independently cacheable.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable

from story_nodes.models import ChatMsg
from story_nodes.nodes.choices import PlayerChoiceGenerator
from story_nodes.nodes.node import DialogueNode, NodeLifecycleError, NodeState, hash_prompt
from story_nodes.streaming.messages import ClientFactory, MessageStream
from story_nodes.transcript import messages_to_lines

logger = logging.getLogger(__name__)

MessageCallback = Callable[[ChatMsg], None]


class NodeCache:
    """Constructor-scoped node cache.

    Args:
        player_name:     The human player's speaker name.
        choices:         Generator for the two trailing player options.
        client_factory:  Called with (on_content, on_end) to build the
                         token stream client of each new node stream.
        max_nodes:       Optional LRU bound. None keeps every node.
    """

    def __init__(
        self,
        player_name: str,
        choices: PlayerChoiceGenerator,
        client_factory: ClientFactory,
        *,
        max_nodes: int | None = None,
    ) -> None:
        self.player_name = player_name
        self.choices = choices
        self.max_nodes = max_nodes
        self.current_node: DialogueNode | None = None
        self._client_factory = client_factory
        self._nodes: OrderedDict[str, DialogueNode] = OrderedDict()
        self._live: DialogueNode | None = None
        self._on_message: MessageCallback | None = None
        self._story_context = ""
        self._lineage_prompt = ""
        self._transcript: list[ChatMsg] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: str) -> bool:
        return key in self._nodes

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def stream_from_node(
        self,
        prompt: str,
        story_context: str,
        on_message: MessageCallback,
        character_names: list[str],
        replay_delay_ms: int = 100,
        *,
        wait: bool = False,
    ) -> None:
        """Deliver the dialogue for `prompt` to `on_message`.

        Known prompts are replayed; unknown ones start a new stream. With
        wait=True a started stream is awaited, so failures in it (player
        option generation, for one) propagate to the caller.
        """
        key = hash_prompt(prompt)
        logger.info(
            "stream_from_node %s prompt_len=%d cast=%s", key, len(prompt), ", ".join(character_names)
        )
        node = self.get_node(key)
        if node is not None and node is self.current_node and node.state is not NodeState.CREATED:
            logger.warning("node %s is already current, not starting a new stream", key)
            return

        if self._live is not None:
            self._live.detach()
            self._live = None
        self._on_message = on_message
        self._story_context = story_context

        if node is None:
            node = self.create_node(prompt, story_context)
        if node.state is NodeState.CREATED:
            await self._go_live(node, character_names, wait)
            return

        logger.info("cache hit %s: replaying %d messages", key, len(node.messages))
        if node.state is NodeState.STREAMING:
            logger.warning("node %s is still streaming, following it after the replay", key)
        self.current_node = node
        await self._replay(node, on_message, replay_delay_ms / 1000)

    def handle_streamed_message(self, message: ChatMsg) -> None:
        """Forward a live message to the consumer and checkpoint the lineage."""
        if self.current_node is None:
            raise NodeLifecycleError(f"No current node, blocking message {message}")

        self._transcript.append(message)
        if self._on_message is not None:
            self._on_message(message)

        prompt = self._lineage_prompt + messages_to_lines(self._transcript)
        self.current_node = self.create_node(prompt, self._story_context)
        logger.debug("checkpoint %s after %d messages", self.current_node.hash, len(self._transcript))

    # ------------------------------------------------------------------
    # Cache primitives
    # ------------------------------------------------------------------

    def open_stream(self, character_names: list[str]) -> MessageStream:
        return MessageStream(self.player_name, character_names, self._client_factory)

    def create_node(self, prompt: str, story_context: str) -> DialogueNode:
        """Return the node registered for `prompt`, creating it if needed."""
        return self.add_node(DialogueNode(prompt, story_context, self))

    def add_node(self, node: DialogueNode) -> DialogueNode:
        """Register `node` unless its hash is taken; return the registered node."""
        existing = self._nodes.get(node.hash)
        if existing is not None:
            if existing.prompt != node.prompt:
                logger.warning("hash collision on %s, keeping the registered node", node.hash)
            self._nodes.move_to_end(node.hash)
            return existing
        self._nodes[node.hash] = node
        self._evict(keep=node)
        return node

    def get_node(self, key: str) -> DialogueNode | None:
        node = self._nodes.get(key)
        if node is not None:
            self._nodes.move_to_end(key)
        return node

    def remove_node(self, key: str, node: DialogueNode | None = None) -> bool:
        """Drop the node under `key`; with `node`, only if it is the one registered."""
        existing = self._nodes.get(key)
        if existing is None or (node is not None and existing is not node):
            return False
        del self._nodes[key]
        if self._live is existing:
            self._live = None
        logger.info("removed node %s", key)
        return True

    def register_continuation(self, node: DialogueNode) -> DialogueNode:
        """Register a continuation and return the node that will take the stream.

        A checkpoint that was never started is adopted in place of `node`.
        Any other node already holding the hash keeps its place, and `node`
        carries the stream unregistered.
        """
        registered = self.add_node(node)
        if registered is not node:
            if registered.state is NodeState.CREATED:
                logger.debug("continuation %s adopts checkpoint", registered.hash)
                node = registered
            else:
                logger.warning(
                    "continuation %s already cached as %s, not registering", node.hash, registered
                )
        node.attach_as_continuation()
        return node

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _go_live(self, node: DialogueNode, character_names: list[str], wait: bool) -> None:
        self.current_node = node
        self._live = node
        self._lineage_prompt = node.prompt
        self._transcript = []
        node.follow()
        task = await node.start_new_stream_messages(character_names)
        if wait:
            await task

    async def _replay(self, node: DialogueNode, on_message: MessageCallback, delay: float) -> None:
        delivered = 0
        while self.current_node is node:
            if delivered < len(node.messages):
                if delivered and delay > 0:
                    await asyncio.sleep(delay)
                    if self.current_node is not node:
                        break
                on_message(node.messages[delivered])
                delivered += 1
                continue
            if node.state in (NodeState.STREAMING, NodeState.COMPLETING):
                # caught up with a node still generating: forward the rest live
                self._live = node
                self._lineage_prompt = node.prompt
                self._transcript = list(node.messages)
                node.follow()
            break

    def _evict(self, keep: DialogueNode) -> None:
        if self.max_nodes is None:
            return
        for key in list(self._nodes):
            if len(self._nodes) <= self.max_nodes:
                break
            node = self._nodes[key]
            if node is keep or node is self.current_node or node is self._live:
                continue
            del self._nodes[key]
            logger.debug("evicted node %s", key)
