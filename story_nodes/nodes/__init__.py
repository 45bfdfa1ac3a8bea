"""Prompt-keyed dialogue node cache."""

from .cache import NodeCache  # noqa: F401
from .choices import (  # noqa: F401
    ALTERNATIVE_STYLES,
    ChoiceGenerationError,
    PlayerChoiceGenerator,
)
from .node import (  # noqa: F401
    DialogueNode,
    NodeLifecycleError,
    NodeState,
    hash_prompt,
)
