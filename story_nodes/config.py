"""Environment configuration and wiring of the runtime objects.

Values come from the process environment, after a `.env` file in the
working directory has been loaded with python-dotenv. Unset variables
fall back to the defaults below.
"""

from __future__ import annotations

import functools
import os

from dotenv import load_dotenv
from pydantic import BaseModel

from story_nodes.backend import Backend, ProviderFormat
from story_nodes.llm import HttpLLM
from story_nodes.nodes.cache import NodeCache
from story_nodes.nodes.choices import PlayerChoiceGenerator
from story_nodes.streaming.client import TokenStreamClient
from story_nodes.streaming.messages import ClientFactory


class Settings(BaseModel):
    provider_url: str = "http://localhost:5001"
    api_key: str = ""
    provider_format: ProviderFormat = "koboldcpp"
    model: str = ""
    timeout: float = 120.0
    temperature: float = 1.0
    max_tokens: int = 2048
    player_name: str = "Player"
    replay_delay_ms: int = 100
    node_cache_max_size: int | None = None
    messages_per_act: int = 10


# Settings field -> environment variable
_ENV = {
    "provider_url": "LLM_PROVIDER_URL",
    "api_key": "LLM_API_KEY",
    "provider_format": "LLM_PROVIDER_FORMAT",
    "model": "LLM_MODEL",
    "timeout": "LLM_TIMEOUT",
    "temperature": "LLM_TEMPERATURE",
    "max_tokens": "LLM_MAX_TOKENS",
    "player_name": "PLAYER_NAME",
    "replay_delay_ms": "REPLAY_DELAY_MS",
    "node_cache_max_size": "NODE_CACHE_MAX_SIZE",
    "messages_per_act": "MESSAGES_PER_ACT",
}


def load_settings(env_file: str | None = None) -> Settings:
    """Load `.env` (or `env_file`) and build Settings from the environment.

    Raises pydantic.ValidationError when a variable doesn't parse.
    """
    load_dotenv(env_file)
    values = {field: os.getenv(var) for field, var in _ENV.items()}
    return Settings(**{k: v for k, v in values.items() if v not in (None, "")})


def build_backend(settings: Settings, max_tokens: int | None = None) -> Backend:
    return Backend(
        settings.provider_url,
        api_key=settings.api_key,
        format=settings.provider_format,
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=max_tokens or settings.max_tokens,
    )


def build_llm(settings: Settings) -> HttpLLM:
    # player options are one short line each
    return HttpLLM(build_backend(settings, min(settings.max_tokens, 256)), timeout=settings.timeout)


def build_client_factory(settings: Settings) -> ClientFactory:
    """Partial TokenStreamClient constructor awaiting (on_content, on_end)."""
    return functools.partial(TokenStreamClient, backend=build_backend(settings), timeout=settings.timeout)


def build_cache(settings: Settings, llm=None) -> NodeCache:
    return NodeCache(
        settings.player_name,
        PlayerChoiceGenerator(llm or build_llm(settings)),
        build_client_factory(settings),
        max_nodes=settings.node_cache_max_size,
    )
