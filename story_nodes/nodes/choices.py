"""Player response options.

A completed dialogue node ends with two lines by the player for the human
to choose between. When the stream didn't supply them they are generated
here with short non-streaming LLM calls. The second option is steered
towards a randomly chosen style so that the two choices differ.
"""

from __future__ import annotations

import logging
import random

from story_nodes.llm import LLM
from story_nodes.models import ChatMsg
from story_nodes.transcript import messages_to_string

logger = logging.getLogger(__name__)

ALTERNATIVE_STYLES = (
    "opposite",
    "overly positive",
    "overly negative",
    "funny",
    "bored",
    "sarcastic",
    "curious",
    "confused",
)


class ChoiceGenerationError(RuntimeError):
    """Raised when the LLM produced nothing usable as a player line."""


class PlayerChoiceGenerator:
    def __init__(self, llm: LLM, rng: random.Random | None = None) -> None:
        self._llm = llm
        self._rng = rng or random.Random()

    def random_style(self) -> str:
        return self._rng.choice(ALTERNATIVE_STYLES)

    async def player_response(
        self, prompt: str, messages: list[ChatMsg], player_name: str
    ) -> ChatMsg:
        """Generate the player's first response to the conversation so far."""
        query = (
            "Given the following prompt and conversation context, generate a short "
            f"phrase or short sentence response from {player_name}.\n\n"
            f"Prompt: {prompt}\n\n"
            f"Conversation:\n{messages_to_string(messages)}\n\n"
            "Player response:"
        )
        text = await self._llm("player_response", query)
        return ChatMsg(name=player_name, message=_clean_choice(text, player_name))

    async def alternative_response(
        self, prompt: str, messages: list[ChatMsg], player_name: str, style: str = "random"
    ) -> ChatMsg:
        """Generate a second option that differs from the last message.

        `style` is "random" (pick from ALTERNATIVE_STYLES), "none"/"" for a
        plain "different" response, or any explicit style word.
        """
        if not messages:
            raise ChoiceGenerationError("No messages to build an alternative response from")
        *conversation, original = messages

        if style == "random":
            style = self.random_style()
        if style in ("", "none"):
            extension = "that is different than the player's original response"
        else:
            extension = f"that is **{style}** compared to the player's original response"
        logger.debug("alternative response style=%s", style or "none")

        query = (
            f"Given the following prompt and conversation, generate a unique response {extension}.\n\n"
            f"Prompt: {prompt}\n\n"
            f"Conversation:\n{messages_to_string(conversation)}\n\n"
            f'Original response: "{original.message}"\n\n'
            "New alternative response:"
        )
        text = await self._llm("alternative_response", query)
        return ChatMsg(name=player_name, message=_clean_choice(text, player_name))


def _clean_choice(text: str, player_name: str) -> str:
    """Reduce raw model output to a single bare utterance."""
    line = next((raw.strip() for raw in text.splitlines() if raw.strip()), "")
    for prefix in (f"{player_name}:", "Player response:", "New alternative response:"):
        if line.lower().startswith(prefix.lower()):
            line = line[len(prefix):].strip()
    if len(line) >= 2 and line[0] == line[-1] and line[0] in "\"'":
        line = line[1:-1].strip()
    if not line:
        raise ChoiceGenerationError(f"Generated player line {text!r} is empty")
    return line
