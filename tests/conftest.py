"""Shared fixtures: an in-memory host that behaves like the on-device runtime."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from fmchat.exceptions import Unsupported
from fmchat.protocols import Capability, SessionConfig


@dataclass
class ScriptedResponse:
    chunks: list[str]
    error: BaseException | None = None
    gate: asyncio.Event | None = None


class FakeSession:
    def __init__(self, host: FakeHost, config: SessionConfig, max_tokens: int) -> None:
        self.host = host
        self.config = config
        self._max_tokens = max_tokens
        self._tokens_so_far = 0
        self.destroyed = False
        self.destroy_calls = 0
        self.prompts: list[str] = []

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def tokens_so_far(self) -> int:
        return self._tokens_so_far

    @property
    def tokens_left(self) -> int:
        return self._max_tokens - self._tokens_so_far

    @property
    def temperature(self) -> float:
        return self.config.temperature

    @property
    def top_k(self) -> int:
        return self.config.top_k

    def _charge(self, text: str) -> None:
        self._tokens_so_far = min(self._max_tokens, self._tokens_so_far + len(text))

    async def stream(self, prompt: str):
        if self.destroyed:
            raise RuntimeError("session destroyed")
        self.prompts.append(prompt)
        self._charge(prompt)
        response = self.host.next_response(prompt)
        if response.gate is not None:
            await response.gate.wait()
        for chunk in response.chunks:
            await asyncio.sleep(0)
            yield chunk
        if response.error is not None:
            raise response.error
        if response.chunks:
            self._charge(response.chunks[-1])

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self.host.destroy_error is not None:
            raise self.host.destroy_error
        self.destroyed = True


@dataclass
class FakeHost:
    capability: Capability = field(
        default_factory=lambda: Capability(default_temperature=0.8, default_top_k=3, max_tokens=4096)
    )
    unsupported_reason: str | None = None
    probe_error: BaseException | None = None
    create_error: BaseException | None = None
    destroy_error: BaseException | None = None
    create_gate: asyncio.Event | None = None
    sessions: list[FakeSession] = field(default_factory=list)
    responses: deque = field(default_factory=deque)
    probe_calls: int = 0

    def queue_response(
        self,
        chunks: list[str],
        error: BaseException | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.responses.append(ScriptedResponse(list(chunks), error, gate))

    def next_response(self, prompt: str) -> ScriptedResponse:
        if self.responses:
            return self.responses.popleft()
        return ScriptedResponse([f"echo: {prompt}"])

    @property
    def live_sessions(self) -> list[FakeSession]:
        return [s for s in self.sessions if not s.destroyed]

    async def probe(self) -> Capability:
        self.probe_calls += 1
        await asyncio.sleep(0)
        if self.unsupported_reason is not None:
            raise Unsupported(self.unsupported_reason)
        if self.probe_error is not None:
            raise self.probe_error
        return self.capability

    async def create(self, config: SessionConfig) -> FakeSession:
        await asyncio.sleep(0)
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_error is not None:
            error, self.create_error = self.create_error, None
            raise error
        session = FakeSession(self, config, self.capability.max_tokens or 4096)
        self.sessions.append(session)
        return session


async def async_iter(items, error: BaseException | None = None, delay: float = 0.0):
    for item in items:
        if delay:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)
        yield item
    if error is not None:
        raise error


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


def make_mock_fm(
    available: bool = True,
    reason: str | None = None,
    snapshots=("Hel", "Hello"),
    sampling: bool = False,
):
    """Mock ``apple_fm_sdk`` module with a streaming session."""
    fm = MagicMock(name="apple_fm_sdk")
    if not sampling:
        del fm.SamplingMode
    model = MagicMock(name="SystemLanguageModel()")
    model.is_available.return_value = (available, reason)
    fm.SystemLanguageModel.return_value = model

    session = MagicMock(name="LanguageModelSession()")

    async def stream_response(prompt, **kwargs):
        for snapshot in snapshots:
            await asyncio.sleep(0)
            yield snapshot

    session.stream_response = MagicMock(side_effect=stream_response)
    fm.LanguageModelSession.return_value = session
    return fm


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()
