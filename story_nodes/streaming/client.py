"""Token stream client: one upstream streaming completion at a time.

The client POSTs a prompt with streaming enabled, decodes the
server-sent-event body as it arrives, and hands every non-empty text
fragment to `on_content` in arrival order. Exactly one `on_end` call is
made per request with a StreamEndReason:

    NATURAL_END        backend sent `data: [DONE]` or a finish_reason
    CONNECTION_CLOSED  body ended (or the transport failed) without either
    USER_CANCELLED     cancel_stream() was called, or a newer start_stream()
                       superseded the request

Requests and frames are shaped by story_nodes.backend.Backend, for the
koboldcpp and OpenAI-compatible streaming endpoints (chat-style
`choices[0].delta.content` frames are accepted too).

Transport faults are logged and end the stream; they never raise into the
caller. Malformed frames are skipped with a warning. An exception from a
callback ends the stream as CONNECTION_CLOSED and then fails the stream
task.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from story_nodes.backend import Backend

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

ContentCallback = Callable[[str], Awaitable[None]]


class StreamEndReason(enum.Enum):
    NATURAL_END = "natural_end"
    CONNECTION_CLOSED = "connection_closed"
    USER_CANCELLED = "user_cancelled"


EndCallback = Callable[[StreamEndReason], Awaitable[None]]


# ---------------------------------------------------------------------------
# SSE framing
# ---------------------------------------------------------------------------

class SSEFrameBuffer:
    """Reassembles `data:` payloads from arbitrarily split text chunks.

    Only `data:` lines carry payloads; `event:`, `id:` and comment lines
    are ignored. A line is emitted once its terminating newline arrived;
    flush() emits whatever is left when the body ends.
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [p for p in (self._payload(line) for line in lines) if p is not None]

    def flush(self) -> list[str]:
        line, self._pending = self._pending, ""
        payload = self._payload(line)
        return [payload] if payload is not None else []

    @staticmethod
    def _payload(line: str) -> str | None:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            return None
        payload = line[len("data:"):].strip()
        return payload or None


# ---------------------------------------------------------------------------
# TokenStreamClient
# ---------------------------------------------------------------------------

@dataclass
class _Stream:
    id: str
    prompt: str
    active: bool = True
    in_callback: bool = False
    task: asyncio.Task | None = None
    received: list[str] = field(default_factory=list)


class TokenStreamClient:
    """Streams one completion at a time and reports how it ended.

    Args:
        on_content: Awaited with each non-empty text fragment.
        on_end:     Awaited exactly once per request with the end reason.
        backend:    Where to send requests and how to shape them.
        timeout:    HTTP timeout in seconds; applies per read, not to the
                    whole stream.
        transport:  Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        on_content: ContentCallback,
        on_end: EndCallback,
        backend: Backend,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._on_content = on_content
        self._on_end = on_end
        self._backend = backend
        self._timeout = timeout
        self._transport = transport
        self._count = 0
        self._current: _Stream | None = None

    @property
    def is_streaming(self) -> bool:
        return self._current is not None

    @property
    def current_stream_id(self) -> str | None:
        return self._current.id if self._current else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_stream(self, prompt: str) -> asyncio.Task:
        """Open a new streaming request, superseding any active one."""
        if self._current is not None:
            logger.info("superseding stream %s", self._current.id)
            await self.cancel_stream()

        self._count += 1
        stream = _Stream(id=f"stream_{self._count}", prompt=prompt)
        self._current = stream
        logger.info("starting %s prompt_len=%d", stream.id, len(prompt))
        stream.task = asyncio.create_task(self._run(stream), name=stream.id)
        return stream.task

    async def cancel_stream(self) -> None:
        """Abort the active request. No-op when nothing is streaming."""
        stream = self._current
        if stream is None:
            return
        # While a content callback is running the read loop notices `active`
        # going false once it returns; otherwise the task is parked on the
        # network and is cancelled outright.
        if stream.task is not None and not stream.in_callback:
            stream.task.cancel()
        await self._end(stream, StreamEndReason.USER_CANCELLED)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _handle_payload(self, stream: _Stream, payload: str) -> bool:
        """Deliver one payload; return True when it marks the end of the stream."""
        if payload == DONE_SENTINEL:
            return True
        try:
            text, finished = self._backend.frame_text(json.loads(payload))
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            logger.warning("%s: skipping malformed frame %r (%s)", stream.id, payload, e)
            return False
        if text:
            stream.received.append(text)
            stream.in_callback = True
            try:
                await self._on_content(text)
            finally:
                stream.in_callback = False
        return finished

    async def _run(self, stream: _Stream) -> None:
        url, body = self._backend.request(stream.prompt, stream=True)
        frames = SSEFrameBuffer()
        reason = StreamEndReason.CONNECTION_CLOSED

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                headers = self._backend.headers(stream=True)
                async with client.stream("POST", url, json=body, headers=headers) as resp:
                    resp.raise_for_status()
                    async for chunk in resp.aiter_text():
                        if await self._deliver(stream, frames.feed(chunk)):
                            reason = StreamEndReason.NATURAL_END
                            break
                        if not stream.active:
                            return
                    else:
                        if await self._deliver(stream, frames.flush()):
                            reason = StreamEndReason.NATURAL_END
        except httpx.HTTPError as e:
            logger.error("%s: transport error from %s: %s", stream.id, url, e)
        except Exception:
            # a consumer callback failed; the request still ends exactly once
            await self._end(stream, StreamEndReason.CONNECTION_CLOSED)
            raise

        await self._end(stream, reason)

    async def _deliver(self, stream: _Stream, payloads: list[str]) -> bool:
        for payload in payloads:
            if not stream.active:
                return False
            if await self._handle_payload(stream, payload):
                return True
        return False

    async def _end(self, stream: _Stream, reason: StreamEndReason) -> None:
        if not stream.active:
            return
        stream.active = False
        if self._current is stream:
            self._current = None
        logger.info(
            "%s ended: %s (%d fragments, %d chars)",
            stream.id, reason.value, len(stream.received), sum(map(len, stream.received)),
        )
        await self._on_end(reason)
