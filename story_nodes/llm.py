"""One-shot completions for the short side requests of a dialogue.

Dialogue is streamed through story_nodes.streaming. The player options at
the end of a node are single completions instead, requested through the
`LLM` protocol so that tests can script them:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` names the request ("player_response", "alternative_response")
and is only used for logging.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from story_nodes.backend import Backend

logger = logging.getLogger(__name__)

_FORMAT_NAMES = {"koboldcpp": "KoboldCpp", "openai": "OpenAI-compatible"}


class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


class HttpLLM:
    """LLM backed by a koboldcpp or OpenAI-compatible completion endpoint.

    Args:
        backend:   Where to send requests and how to shape them.
        timeout:   HTTP timeout in seconds.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        backend: Backend,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.backend = backend
        self._timeout = timeout
        self._transport = transport

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self.backend.request(prompt)
        logger.debug("%s: POST %s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=body, headers=self.backend.headers())
                resp.raise_for_status()
                data = resp.json()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self.backend.url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"LLM backend returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except ValueError as e:
            raise LLMError(f"LLM backend sent invalid JSON: {e}") from e

        try:
            text = self.backend.completion_text(data)
        except (ValueError, AttributeError) as e:
            name = _FORMAT_NAMES[self.backend.format]
            raise LLMError(f"Unexpected response format from {name} backend") from e
        logger.debug("%s: %d chars", stage, len(text))
        return text


class LLMError(RuntimeError):
    """The backend could not be reached or did not answer with a completion."""
