"""Tests for story_nodes.streaming.assembler: streamed text to ChatMsg."""

import pytest

from story_nodes.models import ChatMsg
from story_nodes.streaming import MessageAssembler, chat_text_to_messages, normalize_utterance


def msg(name: str, text: str) -> ChatMsg:
    return ChatMsg(name=name, message=text)


def assemble(chunks: list[str], cast=("Alice", "Bob"), player="Player", **kwargs) -> list[ChatMsg]:
    assembler = MessageAssembler(player, list(cast), **kwargs)
    out: list[ChatMsg] = []
    for chunk in chunks:
        out.extend(assembler.feed(chunk))
    return out + assembler.flush()


TRANSCRIPT = (
    "Alice: Hi there! *waves*\n"
    "bob: hey. how are you, alice?\n"
    "\n"
    "Player: Sup Bob: not much\n"
    'Alice: "Fine, thanks."\n'
    "The wind picks up.\n"
    "System: Bob gives Player a flower"
)


class TestLines:
    def test_alice_bob_player(self) -> None:
        assert assemble(["Alice: Hi\nBob: Hey\nPlayer: Sup\n"]) == [
            msg("Alice", "Hi"),
            msg("Bob", "Hey"),
            msg("Player", "Sup"),
        ]

    def test_several_speakers_on_one_line(self) -> None:
        assert assemble(["Alice: Hi there! Bob: Hello. Player: Yo\n"]) == [
            msg("Alice", "Hi there!"),
            msg("Bob", "Hello."),
            msg("Player", "Yo"),
        ]

    def test_names_match_case_insensitively(self) -> None:
        assert assemble(["ALICE: hi bob\n"]) == [msg("Alice", "Hi Bob")]

    def test_longest_name_wins(self) -> None:
        assert assemble(["Anna: Hi\nAnn: Hey\n"], cast=("Ann", "Anna")) == [
            msg("Anna", "Hi"),
            msg("Ann", "Hey"),
        ]

    def test_system_is_a_known_speaker(self) -> None:
        assert assemble(["System: Bob attacks Alice\n"]) == [msg("System", "Bob attacks Alice")]

    def test_blank_lines_collapse(self) -> None:
        assert assemble(["Alice: Hi\n\n\n\nBob: Hey\n"]) == [msg("Alice", "Hi"), msg("Bob", "Hey")]

    def test_escaped_newlines(self) -> None:
        assert assemble(["Alice: Hi\\nBob: Hey"]) == [msg("Alice", "Hi"), msg("Bob", "Hey")]


class TestUnattributedText:
    def test_first_line_goes_to_first_cast_member(self) -> None:
        assert assemble(["Hello there\nBob: Hi\n"]) == [msg("Alice", "Hello there"), msg("Bob", "Hi")]

    def test_later_lines_go_to_default_speaker(self) -> None:
        out = assemble(["Alice: Hi\nThe wind howls\n"], default_speaker="System")
        assert out == [msg("Alice", "Hi"), msg("System", "The wind howls")]

    def test_default_speaker_defaults_to_first_cast_member(self) -> None:
        assert assemble(["Bob: Hi\nwell then\n"])[-1] == msg("Alice", "Well then")

    def test_no_cast_falls_back_to_system(self) -> None:
        assert assemble(["Hello\n"], cast=()) == [msg("System", "Hello")]

    def test_text_before_first_name_on_a_line(self) -> None:
        out = assemble(["Alice: Hi\nindeed Bob: Yes\n"], default_speaker="System")
        assert out == [msg("Alice", "Hi"), msg("System", "Indeed"), msg("Bob", "Yes")]


class TestNormalisation:
    @pytest.mark.parametrize("line, expected", [
        ("Alice: *smiles* Hello (sighs) there [pause]\n", "Hello there"),
        ('Alice: "Hello there"\n', "Hello there"),
        ("Alice: “Hello there”\n", "Hello there"),
        ('Alice: "Hi," she said, "bye."\n', '"Hi," she said, "bye."'),
        ("Alice: yes. of course! why?\n", "Yes. Of course! Why?"),
        ("Alice:   lots    of   space  \n", "Lots of space"),
    ])
    def test_utterance_rules(self, line: str, expected: str) -> None:
        assert assemble([line]) == [msg("Alice", expected)]

    def test_stage_direction_only_is_dropped(self) -> None:
        assert assemble(["Alice: *nods* (quietly)\nBob: Ok\n"]) == [msg("Bob", "Ok")]

    def test_normalize_utterance_capitalises_known_names(self) -> None:
        assert normalize_utterance("ask bob.", {"bob": "Bob"}) == "Ask Bob."

    def test_only_cast_names_are_capitalised(self) -> None:
        out = assemble(["Alice: i am a player. ask bob\n"])
        assert out == [msg("Alice", "I am a player. Ask Bob")]


class TestIncremental:
    def test_partial_line_stays_buffered(self) -> None:
        assembler = MessageAssembler("Player", ["Alice"])
        assert assembler.feed("Alice: Hel") == []
        assert assembler.pending == "Alice: Hel"
        assert assembler.feed("lo\nAli") == [msg("Alice", "Hello")]
        assert assembler.pending == "Ali"

    def test_flush_forces_trailing_line(self) -> None:
        assembler = MessageAssembler("Player", ["Alice"])
        assembler.feed("Alice: Bye")
        assert assembler.flush() == [msg("Alice", "Bye")]
        assert assembler.pending == ""

    def test_reset_forgets_buffer_and_first_line(self) -> None:
        assembler = MessageAssembler("Player", ["Alice", "Bob"], default_speaker="System")
        assembler.feed("Bob: Hi\nhalf")
        assembler.reset()
        assert assembler.pending == ""
        assert assembler.feed("Hello\n") == [msg("Alice", "Hello")]

    def test_split_points_do_not_change_output(self) -> None:
        whole = assemble([TRANSCRIPT])
        assert len(whole) == 7
        for i in range(len(TRANSCRIPT) + 1):
            assert assemble([TRANSCRIPT[:i], TRANSCRIPT[i:]]) == whole

    def test_char_by_char_matches_whole(self) -> None:
        assert assemble(list(TRANSCRIPT)) == assemble([TRANSCRIPT])


class TestChatTextToMessages:
    def test_parses_block_with_system_default(self) -> None:
        out = chat_text_to_messages("Alice: Hi\nThunder rolls\n", "Player", ["Alice"])
        assert out == [msg("Alice", "Hi"), msg("System", "Thunder rolls")]
