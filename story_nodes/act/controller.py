"""Act controller: drives the node cache through one act of a story.

The act is over once enough dialogue lines were delivered (the act's
length modifier times MESSAGES_PER_ACT) and every required action has
been reported back as a System message. Each player line builds a fresh
prompt from the scene and the act transcript and asks the node cache for
the dialogue that follows it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from story_nodes.act.prompts import PromptBuilder
from story_nodes.act.system_messages import format_system_message
from story_nodes.models import SYSTEM_SPEAKER, Act, ChatMsg, Scene
from story_nodes.nodes.cache import NodeCache

logger = logging.getLogger(__name__)

MESSAGES_PER_ACT = 10

RosterProvider = Callable[[], Awaitable[list[str]]]
ChatCallback = Callable[[ChatMsg], None]


class ActController:
    """Owns the narrative state of the running act.

    Args:
        scene:                  Scene the act plays in (feeds the prompt).
        cache:                  Node cache dialogue is requested from.
        get_character_names:    Async roster provider, asked on every stream.
        on_chat:                Receives every dialogue line for display.
        story_context:          Tag passed with every cached node.
        messages_per_act:       Dialogue lines per act at length modifier 1.
        replay_delay_ms:        Pacing of cached replays.
    """

    def __init__(
        self,
        scene: Scene,
        cache: NodeCache,
        get_character_names: RosterProvider,
        on_chat: ChatCallback,
        *,
        story_context: str = "",
        messages_per_act: int = MESSAGES_PER_ACT,
        replay_delay_ms: int = 100,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self.scene = scene
        self.cache = cache
        self.player_name = cache.player_name
        self.story_context = story_context or (scene.story.name if scene.story else "")
        self.messages_per_act = messages_per_act
        self.replay_delay_ms = replay_delay_ms
        self.on_act_completed: list[Callable[[], None]] = []

        self._get_character_names = get_character_names
        self._on_chat = on_chat
        self._prompt_builder = prompt_builder or PromptBuilder(scene)

        self.act: Act | None = None
        self.remaining_messages = 0
        self.remaining_actions: list[str] = []
        self.messages: list[ChatMsg] = []
        self.act_completed = False

    @property
    def is_complete(self) -> bool:
        return self.remaining_messages <= 0 and not self.remaining_actions

    async def start_act(self, act: Act, player_message: str | None = None) -> None:
        self.act = act
        self.act_completed = False
        self.remaining_messages = int(act.length_modifier * self.messages_per_act)
        self.remaining_actions = [format_system_message(a, self.player_name) for a in act.actions]
        self.messages = []

        if player_message:
            await self.handle_player_message(player_message)
        else:
            logger.info(
                "act started, awaiting player: %d messages and %d actions remaining",
                self.remaining_messages, len(self.remaining_actions),
            )

    async def handle_player_message(self, text: str) -> None:
        """Record the player's chosen line and stream the dialogue that follows.

        A newly started stream is awaited to its end, so failures while
        generating the player options are raised here.
        """
        logger.info("player: %s", text)
        self.messages.append(ChatMsg(name=self.player_name, message=text))

        names = await self._get_character_names()
        prompt = self._prompt_builder.build_dialogue_prompt(
            self.remaining_messages, self.remaining_actions, self.player_name, names, self.messages
        )
        await self.cache.stream_from_node(
            prompt, self.story_context, self._handle_streamed_message, names, self.replay_delay_ms,
            wait=True,
        )
        self._check_completed()

    async def handle_system_message(self, text: str) -> None:
        self.remove_required_action(text)
        self._check_completed()

    def remove_required_action(self, text: str) -> bool:
        wanted = format_system_message(text, self.player_name).lower().strip()
        for i, action in enumerate(self.remaining_actions):
            if action.lower().strip() == wanted:
                del self.remaining_actions[i]
                logger.info("required action done: %s (%d left)", action, len(self.remaining_actions))
                return True
        logger.debug("%r is not a required action", text)
        return False

    def lengthen_act(self, amount: int) -> None:
        self.remaining_messages += amount

    def _handle_streamed_message(self, message: ChatMsg) -> None:
        if message.is_from(SYSTEM_SPEAKER):
            message = message.model_copy(
                update={"message": format_system_message(message.message, self.player_name)}
            )
        else:
            self.remaining_messages -= 1

        # the player's own line is recorded once it is chosen
        if not message.is_from(self.player_name):
            self.messages.append(message)

        self._on_chat(message)
        self._check_completed()

    def _check_completed(self) -> None:
        if self.act_completed or not self.is_complete:
            return
        self.act_completed = True
        logger.info("act completed")
        for callback in self.on_act_completed:
            callback()
