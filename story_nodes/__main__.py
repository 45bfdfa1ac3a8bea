"""Terminal front-end: play one act of a story against a streaming backend.

    python -m story_nodes [--scene scene.json] [--act N] [--log-level INFO]

Dialogue lines are printed as they stream in. When the two player
options arrive, type 1 or 2 to pick one, or type your own line.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from story_nodes.act import ActController
from story_nodes.config import Settings, build_cache, load_settings
from story_nodes.models import SYSTEM_SPEAKER, Act, Character, ChatMsg, Player, Scene, Story


def demo_scene(player_name: str) -> Scene:
    return Scene(
        location="The Fountain",
        description="a fountain central to the town of Ashgrove",
        world="This takes place during medieval times in a town called Ashgrove.",
        player=Player(
            name=player_name, age=16, gender="male",
            appearance="tall with messy black hair and green eyes",
        ),
        characters=[
            Character(
                name="Mary", age=15, gender="female",
                appearance="petite with curly brown hair",
                personality="witty and studious",
                description="a brilliant student who loves books",
                accent="posh British",
            ),
            Character(
                name="Ron", age=16, gender="male",
                appearance="tall and lanky with red hair and freckles",
                personality="loyal but sometimes insecure",
                description="a brave friend who stands by his companions",
                accent="working-class British",
            ),
        ],
        story=Story(
            name="Ron's Teeth",
            acts=[
                Act(
                    characters=[player_name, "Mary", "Ron"],
                    description="Ron mysteriously lost all his teeth and is being made fun of by his friends",
                    length_modifier=0.5,
                ),
                Act(
                    characters=[player_name, "Mary", "Ron"],
                    description=f"Mary blames {player_name} for jinxing Ron, but {player_name} denies it. "
                    "Ron doesn't believe him and attacks him",
                    actions=[f"Ron attacks {player_name}"],
                    length_modifier=0.5,
                ),
                Act(
                    characters=[player_name, "Mary", "Ron"],
                    description="Mary admits she was lying and it was her that did it. "
                    "She gives Ron the antidote and his teeth grow back",
                    length_modifier=0.5,
                ),
            ],
        ),
        locations=["The Fountain", "Blacksmith Shop", "Town Boundary", "Knoll Den"],
    )


async def _first_done(*aws) -> None:
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()


async def play_act(scene: Scene, settings: Settings) -> int:
    cache = build_cache(settings)
    options: list[str] = []
    options_ready = asyncio.Event()
    act_done = asyncio.Event()
    controller: ActController

    def on_chat(message: ChatMsg) -> None:
        if message.is_from(settings.player_name):
            options.append(message.message)
            if len(options) == 2:
                options_ready.set()
            return
        print(f"{message.name}: {message.message}")
        if message.is_from(SYSTEM_SPEAKER):
            controller.remove_required_action(message.message)

    async def roster() -> list[str]:
        return scene.character_names()

    controller = ActController(
        scene, cache, roster, on_chat,
        messages_per_act=settings.messages_per_act,
        replay_delay_ms=settings.replay_delay_ms,
    )
    controller.on_act_completed.append(act_done.set)

    act = scene.story.act if scene.story else Act(description=scene.description)
    print(f"-- {act.description} --")
    line = (await asyncio.to_thread(input, f"{settings.player_name}: ")).strip()
    await controller.start_act(act)

    # each turn runs until its stream ends, which is after the options arrive
    turns: list[asyncio.Task] = []
    try:
        while True:
            options.clear()
            options_ready.clear()
            turn = asyncio.create_task(controller.handle_player_message(line))
            turns.append(turn)

            try:
                await asyncio.wait_for(
                    _first_done(options_ready.wait(), act_done.wait(), asyncio.wait([turn])),
                    settings.timeout,
                )
            except asyncio.TimeoutError:
                print("No response from the backend.", file=sys.stderr)
                return 1
            for task in turns:
                if task.done() and task.exception() is not None:
                    print(f"Dialogue failed: {task.exception()}", file=sys.stderr)
                    return 1
            if act_done.is_set():
                print("-- act complete --")
                return 0
            if not options_ready.is_set():
                print("The dialogue ended without player options.", file=sys.stderr)
                return 1

            for i, option in enumerate(options, 1):
                print(f"  {i}) {option}")
            choice = (await asyncio.to_thread(input, "> ")).strip()
            line = options[int(choice) - 1] if choice in ("1", "2") else choice
    finally:
        for task in turns:
            task.cancel()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="story_nodes", description="Play one act of a story")
    parser.add_argument("--scene", type=Path, default=None,
                        help="Scene JSON file (default: built-in demo scene)")
    parser.add_argument("--act", type=int, default=None,
                        help="Index of the act to play (default: the story's current act)")
    parser.add_argument("--env-file", default=None,
                        help="dotenv file to load (default: ./.env)")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings(args.env_file)
    if args.scene:
        scene = Scene.model_validate_json(args.scene.read_text())
    else:
        scene = demo_scene(settings.player_name)
    if args.act is not None and scene.story is not None:
        scene.story.current_act = args.act

    try:
        return asyncio.run(play_act(scene, settings))
    except (KeyboardInterrupt, EOFError):
        print()
        return 130


if __name__ == "__main__":
    sys.exit(main())
