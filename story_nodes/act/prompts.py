"""Handlebars rendering of the dialogue prompt."""

from collections.abc import Callable
from typing import Any

import pybars

from story_nodes.models import Character, ChatMsg, Scene
from story_nodes.transcript import messages_to_lines

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# The conversation section must stay last: a node's continuation prompt
# is its prompt with the transcript appended.
DIALOGUE_TEMPLATE = """\
You are an expert young adult fiction dialogue writer. You will continue the \
following conversation by adding dialogue to it that reflects each character's \
accent and personality.
{{#if setting}}
-SETTING-
{{{setting}}}
{{/if}}{{#if story}}
-STORY: {{{story.title}}}-
{{#if story.previous}}Previously Happened (the player knows about this): {{{story.previous}}}
{{/if}}Current Act (do not reveal this to the player): {{{story.current}}}.
{{/if}}{{#if world}}
-ABOUT THE WORLD-
{{{world}}}
{{/if}}{{#if locations}}
-WORLD LOCATIONS-
Players and characters can ONLY visit these locations:
{{{locations}}}.
{{/if}}
-ABOUT THE PLAYER: {{{player.title}}}-
{{#if player.summary}}{{{player.summary}}}
{{/if}}{{#if player.appearance}}Appearance: {{{player.appearance}}}.
{{/if}}{{#each characters}}
-ABOUT THE CHARACTER: {{{title}}}-
{{#if summary}}{{{summary}}}
{{/if}}{{#if appearance}}Appearance: {{{appearance}}}
{{/if}}{{#if personality}}Personality: {{{personality}}}
{{/if}}{{#if description}}Description: {{{description}}}
{{/if}}{{#if accent}}Accent: {{{accent}}}
{{/if}}{{/each}}
-INSTRUCTIONS-
Continue the conversation with {{remaining_messages}} more lines of dialogue with the Name: Content format.
Character {{{player_name}}} should NOT speak first.
{{#if actions}}
-SPECIAL SYSTEM MESSAGE INSTRUCTIONS-
Add these and ONLY THESE system messages in the conversation, after the appropriate dialogue has been spoken:
{{#each actions}}System: {{{this}}}
{{/each}}Do not have the 'System' character say anything else except for this.
{{/if}}
-CONVERSATION SO FAR-
{{{conversation}}}"""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def _summary(age: int | None, gender: str) -> str:
    # "A 17 year old girl", "A person"; empty when nothing is known
    if not age and not gender:
        return ""
    return f"A {f'{age} year old ' if age else ''}{gender or 'person'}"


def _character_context(character: Character) -> dict[str, Any]:
    return {
        "title": character.name.upper(),
        "summary": _summary(character.age, character.gender),
        "appearance": character.appearance,
        "personality": character.personality,
        "description": character.description,
        "accent": character.accent,
    }


class PromptBuilder:
    """Builds dialogue prompts for one scene.

    Args:
        scene:     Where the dialogue happens and who is in it.
        template:  Handlebars source; DIALOGUE_TEMPLATE unless overridden.
    """

    def __init__(self, scene: Scene, template: str = DIALOGUE_TEMPLATE) -> None:
        self.scene = scene
        self.template = template

    def build_context(
        self,
        remaining_messages: int,
        remaining_actions: list[str],
        player_name: str,
        character_names: list[str],
        messages: list[ChatMsg],
    ) -> dict[str, Any]:
        """Assemble template variables. Returns a dict for render_prompt()."""
        scene = self.scene
        player = scene.player

        setting = ""
        if scene.location:
            cast = ", ".join(character_names)
            who = f"{cast}, and {player_name}" if cast else player_name
            where = f"{scene.location}, {scene.description}" if scene.description else scene.location
            setting = f"{who} (the player) are in {where}, alone."

        story = None
        if scene.story is not None and scene.story.acts:
            story = {
                "title": scene.story.name.upper(),
                "previous": ". ".join(a.description for a in scene.story.previous_acts),
                "current": scene.story.act.description,
            }

        wanted = {n.lower() for n in character_names}
        characters = [
            _character_context(c) for c in scene.characters if c.name.lower() in wanted
        ]

        greeting = f"{character_names[0]}: Hello\n" if character_names else ""

        return {
            "setting": setting,
            "story": story,
            "world": scene.world,
            "locations": ", ".join(scene.locations),
            "player": {
                "title": player_name.upper(),
                "summary": _summary(player.age, player.gender),
                "appearance": player.appearance,
            },
            "characters": characters,
            "remaining_messages": remaining_messages,
            "player_name": player_name,
            "actions": list(remaining_actions),
            "conversation": greeting + messages_to_lines(messages),
        }

    def build_dialogue_prompt(
        self,
        remaining_messages: int,
        remaining_actions: list[str],
        player_name: str,
        character_names: list[str],
        messages: list[ChatMsg],
    ) -> str:
        context = self.build_context(
            remaining_messages, remaining_actions, player_name, character_names, messages
        )
        return render_prompt(self.template, context)
