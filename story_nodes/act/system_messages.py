"""Canonical form of System lines ("Greg gives Mallory flower")."""

import re

_PUNCTUATION = re.compile(r"[^a-zA-Z0-9 ]")
_FILLER = re.compile(r"\b(?:the|a)\b", re.IGNORECASE)
_PLAYER = re.compile(r"\bplayer\b", re.IGNORECASE)
_GIVES_TO = re.compile(r"(\w+) gives (.*) to (\w+)", re.IGNORECASE)


def format_system_message(text: str, player_name: str) -> str:
    """Normalise an action so streamed and required System lines compare equal.

    "Mallory gives the Player a Flower!"  ->  "Mallory gives Anna Flower"
    "Greg gives a flower to Mallory"      ->  "Greg gives Mallory flower"
    """
    text = _PUNCTUATION.sub(" ", text)
    text = _FILLER.sub(" ", text)
    text = _PLAYER.sub(player_name, text)
    text = " ".join(text.split())

    match = _GIVES_TO.search(text)
    if match:
        text = f"{match.group(1)} gives {match.group(3)} {match.group(2)}"
    return text
