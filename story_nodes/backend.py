"""Wire formats of the text-completion backends.

Both the one-shot HttpLLM and the streaming TokenStreamClient talk to the
same backend; this module is the one place that knows how each format
shapes its requests and replies.

    format     one-shot                       streaming
    koboldcpp  POST /api/v1/generate          POST /api/extra/generate/stream
               {"results": [{"text"}]}        data: {"token", "finish_reason"}
    openai     POST /v1/completions           POST /v1/completions + "stream": true
               {"choices": [{"text"}]}        data: {"choices": [{"text" | "delta"}]}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ProviderFormat = Literal["koboldcpp", "openai"]


@dataclass(frozen=True)
class Backend:
    """Connection and sampling settings shared by every request to one backend."""

    url: str
    api_key: str = ""
    format: ProviderFormat = "koboldcpp"
    model: str = ""
    temperature: float = 1.0
    max_tokens: int = 256

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", self.url.rstrip("/"))

    def headers(self, stream: bool = False) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if stream:
            headers["Accept"] = "text/event-stream"
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def request(self, prompt: str, stream: bool = False) -> tuple[str, dict]:
        """Return (url, body) for a completion of `prompt`."""
        if self.format == "openai":
            body: dict = {"prompt": prompt}
            if stream:
                body["stream"] = True
            body["temperature"] = self.temperature
            body["max_tokens"] = self.max_tokens
            if self.model:
                body["model"] = self.model
            return f"{self.url}/v1/completions", body

        path = "/api/extra/generate/stream" if stream else "/api/v1/generate"
        return f"{self.url}{path}", {
            "prompt": prompt,
            "temperature": self.temperature,
            "max_length": self.max_tokens,
        }

    def completion_text(self, data: dict) -> str:
        """Text of a one-shot reply. Raises ValueError on an unknown shape."""
        key = "choices" if self.format == "openai" else "results"
        items = data.get(key)
        if not items or not isinstance(items[0], dict) or "text" not in items[0]:
            raise ValueError(f"reply has no {key}[0].text")
        return items[0]["text"]

    def frame_text(self, data: dict) -> tuple[str, bool]:
        """(text, finished) of one streamed frame. Raises ValueError on an unknown shape."""
        if self.format == "openai":
            choices = data.get("choices")
            if not choices or not isinstance(choices[0], dict):
                raise ValueError("frame has no choices")
            choice = choices[0]
            delta = choice.get("delta") or {}
            text = delta.get("content") or choice.get("text") or ""
            return text, bool(choice.get("finish_reason"))

        if "token" not in data and "finish_reason" not in data:
            raise ValueError("frame has no token")
        return data.get("token") or "", bool(data.get("finish_reason"))
