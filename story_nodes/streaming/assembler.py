"""Streamed text to ChatMsg parsing.

Model output arrives as arbitrary fragments of text in the format

    Alice: Hi there!
    Bob: Hey.  Player: Sup

The assembler buffers fragments and parses every complete line as soon as
its newline arrives. Each line may hold several "Name: utterance"
segments for known speakers (player, cast, and "System"); names match
case-insensitively and are re-capitalised to their canonical form.

Text in front of the first name on a line has no speaker of its own. On
the very first line of the stream it belongs to the first cast member;
after that it goes to the default speaker.

Utterances are normalised before emission: stage directions such as
(sighs), *smiles* and [pause] are removed, whitespace is collapsed, a
quote pair wrapping the whole utterance is dropped, sentences start with
a capital letter and cast names are capitalised. Empty utterances are
discarded.
"""

import re

from story_nodes.models import SYSTEM_SPEAKER, ChatMsg
from story_nodes.transcript import filter_non_speech

_SENTENCE_START = re.compile(r"(^|[.!?]\s+)([a-z])")
_WORD = re.compile(r"\b[a-z]+\b")
_QUOTE_PAIRS = {'"': '"', "'": "'", "“": "”"}


def _speaker_pattern(names: list[str]) -> re.Pattern[str]:
    # Longest first so "Annabel" wins over "Anna".
    alternatives = "|".join(re.escape(n) for n in sorted(names, key=len, reverse=True))
    return re.compile(rf"(?<![\w])(?P<name>{alternatives})\s*:", re.IGNORECASE)


def _strip_wrapping_quotes(text: str) -> str:
    if len(text) < 2:
        return text
    closing = _QUOTE_PAIRS.get(text[0])
    if closing is None or text[-1] != closing:
        return text
    inner = text[1:-1]
    if closing in inner:  # quotes close mid-line, so they don't wrap the whole utterance
        return text
    return inner.strip()


def normalize_utterance(text: str, canonical: dict[str, str]) -> str:
    """Apply the emission rules to one utterance. `canonical` maps lower -> Name."""
    text = " ".join(filter_non_speech(text).split())
    text = _strip_wrapping_quotes(text)
    text = _SENTENCE_START.sub(lambda m: m.group(1) + m.group(2).upper(), text)
    return _WORD.sub(lambda m: canonical.get(m.group(0), m.group(0)), text)


class MessageAssembler:
    """Incremental parser from text fragments to ChatMsg values.

    Args:
        player_name:      The human player's speaker name.
        character_names:  Non-player cast, in roster order.
        default_speaker:  Speaker for unattributed lines after the first one.
                          Defaults to the first cast member ("System" when
                          the cast is empty).
    """

    def __init__(
        self,
        player_name: str,
        character_names: list[str],
        default_speaker: str | None = None,
    ) -> None:
        self.player_name = player_name
        self.character_names = list(character_names)

        roster: list[str] = []
        for name in [*self.character_names, player_name, SYSTEM_SPEAKER]:
            if name and name.lower() not in (r.lower() for r in roster):
                roster.append(name)
        self.roster = roster
        self.first_speaker = self.character_names[0] if self.character_names else SYSTEM_SPEAKER
        self.default_speaker = default_speaker or self.first_speaker

        # cast names only; the player name may double as an ordinary word
        self._canonical = {n.lower(): n for n in self.character_names if n and n != SYSTEM_SPEAKER}
        self._lookup = {n.lower(): n for n in roster}
        self._pattern = _speaker_pattern(roster)
        self._buffer = ""
        self._first_line = True

    @property
    def pending(self) -> str:
        """Text received but not yet parsed."""
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""
        self._first_line = True

    def feed(self, fragment: str) -> list[ChatMsg]:
        """Buffer a fragment and return messages from every line it completed."""
        self._buffer += fragment
        return self._drain(final=False)

    def flush(self) -> list[ChatMsg]:
        """Parse the trailing line even though no newline terminated it."""
        return self._drain(final=True)

    def _drain(self, final: bool) -> list[ChatMsg]:
        # Models sometimes emit the two characters "\n" instead of a newline.
        self._buffer = self._buffer.replace("\\n", "\n")

        messages: list[ChatMsg] = []
        while (end := self._buffer.find("\n")) != -1:
            line, self._buffer = self._buffer[:end], self._buffer[end + 1:]
            messages.extend(self._parse_line(line))
        if final:
            line, self._buffer = self._buffer, ""
            messages.extend(self._parse_line(line))
        return messages

    def _parse_line(self, line: str) -> list[ChatMsg]:
        line = line.strip()
        if not line:
            return []

        matches = list(self._pattern.finditer(line))
        segments: list[tuple[str, str]] = []

        lead = line[: matches[0].start()] if matches else line
        if lead.strip():
            speaker = self.first_speaker if self._first_line else self.default_speaker
            segments.append((speaker, lead))
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(line)
            segments.append((self._lookup[match.group("name").lower()], line[match.end():end]))

        self._first_line = False

        messages: list[ChatMsg] = []
        for speaker, text in segments:
            text = normalize_utterance(text, self._canonical)
            if text:
                messages.append(ChatMsg(name=speaker, message=text))
        return messages


def chat_text_to_messages(
    chat_text: str,
    player_name: str,
    character_names: list[str],
    default_speaker: str = SYSTEM_SPEAKER,
) -> list[ChatMsg]:
    """Parse a complete block of chat text in one go."""
    assembler = MessageAssembler(player_name, character_names, default_speaker)
    return assembler.feed(chat_text) + assembler.flush()
