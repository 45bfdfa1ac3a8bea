"""Tests for story_nodes.act.prompts: Handlebars dialogue prompt."""

import pytest

from story_nodes.act import PromptBuilder, PromptError, render_prompt
from story_nodes.models import Act, Character, ChatMsg, Player, Scene, Story


@pytest.fixture
def scene() -> Scene:
    return Scene(
        location="The Fountain",
        description="a quiet square",
        world="Ashgrove is a mining town.",
        player=Player(name="John", age=17, gender="male", appearance="tall"),
        characters=[
            Character(name="Mary", age=16, gender="female", personality="bubbly"),
            Character(name="Ron", accent="Scottish"),
        ],
        story=Story(
            name="Ron's Teeth",
            acts=[Act(description="Ron lost his teeth"), Act(description="Ron gets angry")],
            current_act=1,
        ),
        locations=["The Fountain", "The Inn"],
    )


def build(scene: Scene, **overrides) -> str:
    args = {
        "remaining_messages": 5,
        "remaining_actions": ["Ron attacks John"],
        "player_name": "John",
        "character_names": ["Mary", "Ron"],
        "messages": [ChatMsg(name="John", message="Hi")],
    }
    args.update(overrides)
    return PromptBuilder(scene).build_dialogue_prompt(**args)


class TestRenderPrompt:
    def test_triple_stash_is_not_escaped(self) -> None:
        assert render_prompt("Hi {{{name}}}", {"name": "<Bob>"}) == "Hi <Bob>"

    def test_double_stash_is_escaped(self) -> None:
        assert render_prompt("Hi {{name}}", {"name": "<Bob>"}) == "Hi &lt;Bob&gt;"

    def test_bad_template_raises_prompt_error(self) -> None:
        with pytest.raises(PromptError, match="Template error"):
            render_prompt("{{#if open}}never closed", {})


class TestDialoguePrompt:
    def test_setting_and_story(self, scene) -> None:
        prompt = build(scene)
        assert "Mary, Ron, and John (the player) are in The Fountain, a quiet square, alone." in prompt
        assert "-STORY: RON'S TEETH-" in prompt
        assert "Previously Happened (the player knows about this): Ron lost his teeth" in prompt
        assert "Current Act (do not reveal this to the player): Ron gets angry." in prompt
        assert "Ashgrove is a mining town." in prompt
        assert "The Fountain, The Inn." in prompt

    def test_player_and_characters(self, scene) -> None:
        prompt = build(scene)
        assert "-ABOUT THE PLAYER: JOHN-" in prompt
        assert "A 17 year old male" in prompt
        assert "Appearance: tall." in prompt
        assert "-ABOUT THE CHARACTER: MARY-" in prompt
        assert "A 16 year old female" in prompt
        assert "Personality: bubbly" in prompt
        assert "-ABOUT THE CHARACTER: RON-" in prompt
        assert "Accent: Scottish" in prompt

    def test_only_present_characters_described(self, scene) -> None:
        prompt = build(scene, character_names=["Mary"])
        assert "-ABOUT THE CHARACTER: RON-" not in prompt
        assert "Mary, and John (the player)" in prompt

    def test_instructions_and_actions(self, scene) -> None:
        prompt = build(scene)
        assert "Continue the conversation with 5 more lines of dialogue" in prompt
        assert "Character John should NOT speak first." in prompt
        assert "System: Ron attacks John\n" in prompt

    def test_no_actions_section_without_actions(self, scene) -> None:
        assert "SPECIAL SYSTEM MESSAGE" not in build(scene, remaining_actions=[])

    def test_conversation_is_last(self, scene) -> None:
        messages = [ChatMsg(name="John", message="Hi"), ChatMsg(name="Mary", message="Hey John")]
        prompt = build(scene, messages=messages)
        assert prompt.endswith("-CONVERSATION SO FAR-\nMary: Hello\nJohn: Hi\nMary: Hey John\n")

    def test_first_act_has_no_history(self, scene) -> None:
        scene.story.current_act = 0
        prompt = build(scene)
        assert "Previously Happened" not in prompt
        assert "Current Act (do not reveal this to the player): Ron lost his teeth." in prompt

    def test_minimal_scene(self) -> None:
        scene = Scene(location="a cave", player=Player(name="John"))
        prompt = build(scene, character_names=[], remaining_actions=[], messages=[])
        assert "-STORY" not in prompt
        assert "-ABOUT THE WORLD-" not in prompt
        assert "John (the player) are in a cave, alone." in prompt
        assert prompt.endswith("-CONVERSATION SO FAR-\n")

    def test_same_inputs_same_prompt(self, scene) -> None:
        assert build(scene) == build(scene)
