"""Streaming dialogue generation.

TokenStreamClient reads one upstream completion stream, MessageAssembler
turns its text into ChatMsg values line by line, and MessageStream wires
the two together for a dialogue node.
"""

from .assembler import (  # noqa: F401
    MessageAssembler,
    chat_text_to_messages,
    normalize_utterance,
)
from .client import (  # noqa: F401
    SSEFrameBuffer,
    StreamEndReason,
    TokenStreamClient,
)
from .messages import MessageStream  # noqa: F401
