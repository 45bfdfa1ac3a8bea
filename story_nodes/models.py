"""Core domain models.

ChatMsg is the unit that flows through the whole streaming core: the
assembler produces it, dialogue nodes cache it, the cache replays it.
The remaining models describe the scene an act is played in and are only
read by the prompt builder and the act controller.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

SYSTEM_SPEAKER = "System"


class ChatMsg(BaseModel):
    """One utterance by a named speaker. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    name: str
    message: str

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"

    def is_from(self, speaker: str) -> bool:
        return self.name.lower() == speaker.lower()


class Act(BaseModel):
    """One act of a story.

    `actions` MUST happen during the act, written as
    "[character] [action] [character] [variable]", e.g.
    "Greg gives Mallory a flower" or "Jackie attacks Greg with a hex".
    """

    characters: list[str] = Field(default_factory=list)
    description: str
    actions: list[str] = Field(default_factory=list)
    moved_characters: list[str] = Field(default_factory=list)
    length_modifier: float = 1.0


class Character(BaseModel):
    """A non-player character as described to the dialogue writer."""

    name: str
    age: int | None = None
    gender: str = ""
    appearance: str = ""
    personality: str = ""
    description: str = ""
    accent: str = ""


class Player(BaseModel):
    name: str
    age: int | None = None
    gender: str = ""
    appearance: str = ""


class Story(BaseModel):
    name: str
    acts: list[Act]
    current_act: int = 0

    @property
    def act(self) -> Act:
        return self.acts[self.current_act]

    @property
    def previous_acts(self) -> list[Act]:
        return self.acts[: self.current_act]


class Scene(BaseModel):
    """Everything the prompt builder knows about where dialogue happens."""

    location: str
    description: str = ""
    world: str = ""
    player: Player
    characters: list[Character] = Field(default_factory=list)
    story: Story | None = None
    locations: list[str] = Field(default_factory=list)

    def character_names(self) -> list[str]:
        return [c.name for c in self.characters]
