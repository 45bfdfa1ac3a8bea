"""Shared fakes: a scripted LLM and in-memory token stream clients."""

import asyncio
import random

import pytest

from story_nodes.config import _ENV
from story_nodes.models import ChatMsg
from story_nodes.nodes import NodeCache, PlayerChoiceGenerator
from story_nodes.streaming import StreamEndReason


class StubLLM:
    """Deterministic LLM stand-in for tests.

    Provide a dict mapping stage name → list of responses (in call order).
    Raises if a stage is called more times than responses were provided.
    """

    def __init__(self, responses: dict[str, list[str]] | None = None) -> None:
        self._queues: dict[str, list[str]] = {k: list(v) for k, v in (responses or {}).items()}
        self.calls: list[tuple[str, str]] = []

    def add(self, stage: str, *responses: str) -> None:
        self._queues.setdefault(stage, []).extend(responses)

    @property
    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    async def __call__(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        queue = self._queues.get(stage)
        if not queue:
            raise AssertionError(
                f"StubLLM: unexpected call to stage={stage!r} "
                f"(no responses queued). calls so far: {self.calls}"
            )
        return queue.pop(0)

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed, catching missing LLM calls."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(
                f"StubLLM: unused responses remain: {leftover}"
            )


class FakeStreamClient:
    """In-memory TokenStreamClient.

    Content is pushed by the test with push()/end(), or played from
    `script` as soon as the stream starts.
    """

    def __init__(self, on_content, on_end, script=None) -> None:
        self.on_content = on_content
        self.on_end = on_end
        self.script = script
        self.prompts: list[str] = []
        self.active = False
        self.task: asyncio.Task | None = None
        self.ends: list[StreamEndReason] = []
        self._done = asyncio.Event()

    async def start_stream(self, prompt: str) -> asyncio.Task:
        if self.active:
            await self.cancel_stream()
        self.prompts.append(prompt)
        self.active = True
        self._done = asyncio.Event()
        if self.script is None:
            self.task = asyncio.create_task(self._done.wait())
        else:
            chunks, reason = self.script
            self.task = asyncio.create_task(self._play(chunks, reason))
        return self.task

    async def push(self, *chunks: str) -> None:
        for chunk in chunks:
            if self.active:
                await self.on_content(chunk)

    async def end(self, reason: StreamEndReason = StreamEndReason.NATURAL_END) -> None:
        if not self.active:
            return
        self.active = False
        self._done.set()
        self.ends.append(reason)
        await self.on_end(reason)

    async def cancel_stream(self) -> None:
        await self.end(StreamEndReason.USER_CANCELLED)

    async def _play(self, chunks, reason) -> None:
        for chunk in chunks:
            await asyncio.sleep(0)
            await self.push(chunk)
        await self.end(reason)


class FakeStreams:
    """Client factory that records every client it builds."""

    def __init__(self, script=None) -> None:
        self.script = script
        self.clients: list[FakeStreamClient] = []

    def __call__(self, on_content, on_end) -> FakeStreamClient:
        client = FakeStreamClient(on_content, on_end, self.script)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeStreamClient:
        return self.clients[-1]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep a developer's environment out of every test."""
    for var in _ENV.values():
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def streams() -> FakeStreams:
    return FakeStreams()


@pytest.fixture
def scripted_streams():
    """FakeStreams whose clients play `chunks` and end with `reason` on start."""
    def make(chunks: list[str], reason: StreamEndReason = StreamEndReason.NATURAL_END) -> FakeStreams:
        return FakeStreams(script=(chunks, reason))
    return make


@pytest.fixture
def make_cache(llm, streams):
    def make(client_factory=None, max_nodes: int | None = None) -> NodeCache:
        return NodeCache(
            "Player",
            PlayerChoiceGenerator(llm, random.Random(7)),
            client_factory or streams,
            max_nodes=max_nodes,
        )
    return make


@pytest.fixture
def cache(make_cache) -> NodeCache:
    return make_cache()


@pytest.fixture
def received() -> list[ChatMsg]:
    return []
