"""Helpers that operate on ordered ChatMsg transcripts."""

from __future__ import annotations

import re

from story_nodes.models import SYSTEM_SPEAKER, ChatMsg

_NON_SPEECH = re.compile(r"\[.*?\]|\(.*?\)|\*.*?\*")
_DIGITS_ONLY = re.compile(r"^[0-9]\.?$")
_LONE_QUOTE = re.compile(r'(^|[^"])"([^"]|$)')


def messages_to_string(messages: list[ChatMsg]) -> str:
    """Render messages as "Name: text" lines joined by newlines."""
    return "\n".join(str(m) for m in messages)


def messages_to_lines(messages: list[ChatMsg]) -> str:
    """Like messages_to_string, but every line is newline-terminated.

    Used wherever a transcript is appended to a prompt, so that the next
    appended line starts on a fresh line.
    """
    return "".join(f"{m}\n" for m in messages)


def filter_non_speech(text: str) -> str:
    """Remove stage directions such as (sighs), *smiles* and [pause]."""
    return _NON_SPEECH.sub("", text)


def remove_system_messages(
    messages: list[ChatMsg], remove_emotes: bool, remove_attacks: bool
) -> list[ChatMsg]:
    """Drop System lines: attacks ("Ron attacks John") and/or all other emotes."""
    kept: list[ChatMsg] = []
    for msg in messages:
        if msg.name == SYSTEM_SPEAKER:
            words = msg.message.split(" ")
            is_attack = len(words) > 1 and words[1] == "attacks"
            if is_attack and remove_attacks:
                continue
            if not is_attack and remove_emotes:
                continue
        kept.append(msg)
    return kept


def splice_messages(
    messages: list[ChatMsg], player_name: str, player_messages_to_include: int
) -> list[ChatMsg]:
    """Keep only the tail starting at the Nth-last message by the player.

    Returns everything when the player never spoke or spoke fewer times.
    """
    count = 0
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].name == player_name:
            count += 1
            if count == player_messages_to_include:
                return messages[i:]
    return list(messages)


def trim_messages(messages: list[ChatMsg]) -> list[ChatMsg]:
    """Drop empty and numbering-only lines, remove stray single double-quotes."""
    trimmed: list[ChatMsg] = []
    for msg in messages:
        if msg.message == "" or _DIGITS_ONLY.match(msg.message):
            continue
        trimmed.append(msg.model_copy(update={"message": _LONE_QUOTE.sub(r"\1\2", msg.message)}))
    return trimmed


def real_message_count(messages: list[ChatMsg]) -> int:
    """Number of messages that still carry speech once stage directions are gone."""
    speech = [m.model_copy(update={"message": filter_non_speech(m.message)}) for m in messages]
    return len(trim_messages(speech))


def reduce_messages(messages: list[ChatMsg], total_chars: int) -> list[ChatMsg]:
    """Keep the most recent messages whose rendered length fits the budget."""
    kept: list[ChatMsg] = []
    used = 0
    for msg in reversed(messages):
        size = len(str(msg))
        if used + size > total_chars:
            break
        kept.append(msg)
        used += size
    kept.reverse()
    return kept
