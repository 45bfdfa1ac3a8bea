"""Act-level driving of the dialogue cache: prompts, System lines, budgets."""

from .controller import ActController  # noqa: F401
from .prompts import PromptBuilder, PromptError, render_prompt  # noqa: F401
from .system_messages import format_system_message  # noqa: F401
