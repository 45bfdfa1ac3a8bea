"""Prompt-keyed caching of streamed LLM dialogue."""
