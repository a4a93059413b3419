"""
Chat orchestration.

:class:`ChatOrchestrator` wires the session controller, the stream aggregator
and the transcript together for each user action. It runs an explicit
``IDLE``/``SENDING``/``RECONFIGURING`` state machine. Only one action that
touches the session runs at a time.
"""

from __future__ import annotations

import enum
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

from .config import ChatSettings
from .exceptions import ConfigurationError, InitializationError, Unsupported
from .protocols import ModelHost, SessionConfig, SessionHandle
from .session import SessionController, Stats
from .streaming import StreamAggregator, StreamStatus
from .transcript import TranscriptStore, Turn

logger = logging.getLogger("fmchat")

UNSUPPORTED_BANNER = "The on-device language model is not available: {reason}"


class ChatPhase(enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    RECONFIGURING = "reconfiguring"


@dataclass
class ChatState:
    """Everything the presentation layer renders. Mutated only by the orchestrator."""

    transcript: TranscriptStore = field(default_factory=TranscriptStore)
    phase: ChatPhase = ChatPhase.IDLE
    stats: Stats = field(default_factory=Stats.empty)
    raw_response: str = ""
    error_banner: str | None = None
    show_raw: bool = False


@dataclass(frozen=True)
class RenderSnapshot:
    turns: tuple[Turn, ...]
    stats: Stats
    raw_response: str
    error_banner: str | None
    is_sending: bool
    phase: ChatPhase
    show_raw: bool = False
    is_busy: bool = False


Listener = Callable[[RenderSnapshot], Awaitable[None] | None]


async def _host_stream(session: SessionHandle, prompt: str) -> AsyncIterator[str]:
    # Defers session.stream() so errors raised while opening the stream reach the aggregator.
    async for chunk in session.stream(prompt):
        yield chunk


class ChatOrchestrator:
    def __init__(
        self,
        controller: SessionController,
        settings: ChatSettings | None = None,
        state: ChatState | None = None,
        on_change: Listener | None = None,
    ) -> None:
        self.controller = controller
        self.settings = settings or ChatSettings()
        self.state = state or ChatState()
        self.on_change = on_change

    @classmethod
    def for_host(
        cls,
        host: ModelHost,
        settings: ChatSettings | None = None,
        on_change: Listener | None = None,
    ) -> ChatOrchestrator:
        return cls(SessionController(host), settings=settings, on_change=on_change)

    @property
    def phase(self) -> ChatPhase:
        return self.state.phase

    @property
    def is_sending(self) -> bool:
        return self.state.phase is ChatPhase.SENDING

    @property
    def is_busy(self) -> bool:
        """True while a prompt streams or the session is being replaced."""
        return self.state.phase is not ChatPhase.IDLE

    @property
    def transcript(self) -> TranscriptStore:
        return self.state.transcript

    def snapshot(self) -> RenderSnapshot:
        return RenderSnapshot(
            turns=self.state.transcript.turns,
            stats=self.state.stats,
            raw_response=self.state.raw_response,
            error_banner=self.state.error_banner,
            is_sending=self.is_sending,
            phase=self.state.phase,
            show_raw=self.state.show_raw,
            is_busy=self.is_busy,
        )

    async def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            result = self.on_change(self.snapshot())
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("[FMChat] Render listener failed.", exc_info=True)

    async def _initialize(self) -> bool:
        try:
            await self.controller.initialize()
        except Unsupported as exc:
            self.state.error_banner = UNSUPPORTED_BANNER.format(reason=exc.reason)
            return False
        except InitializationError as exc:
            self.state.error_banner = f"Failed to initialize: {exc}"
            return False
        self.state.stats = self.controller.refresh_stats()
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Create the first session and greet. Returns False when the chat is unusable."""
        ok = await self._initialize()
        if ok:
            self.state.transcript.reset(self.settings.greeting)
        await self._notify()
        return ok

    async def submit(self, text: str) -> bool:
        """Send one prompt and stream the answer into the transcript.

        Returns False (and leaves the transcript untouched) when the text is
        blank, there is no session, or another prompt is still streaming.
        """
        prompt = text.strip()
        session = self.controller.session
        if not prompt or session is None or self.is_busy:
            logger.debug(
                "[FMChat] submit() rejected (blank=%s, session=%s, phase=%s).",
                not prompt,
                session is not None,
                self.state.phase.value,
            )
            return False

        self.state.transcript.append_pair(prompt)
        self.state.phase = ChatPhase.SENDING
        await self._notify()

        aggregator = StreamAggregator(
            mode=self.settings.stream_mode,
            first_chunk_timeout=self.settings.first_chunk_timeout,
            idle_timeout=self.settings.idle_timeout,
            is_live=lambda: self.controller.is_live(session),
        )
        try:
            async for update in aggregator.consume(_host_stream(session, prompt)):
                self.state.transcript.update_last(update.content)
                if update.status is not StreamStatus.FAILED:
                    self.state.raw_response = update.content
                await self._notify()
        finally:
            self.state.transcript.finalize()
            self.state.phase = ChatPhase.IDLE

        final = aggregator.final
        if final is not None and final.status is StreamStatus.DONE:
            self.state.stats = self.controller.refresh_stats(session)
        await self._notify()
        return True

    async def reconfigure(self, config: SessionConfig, label: str = "configuration") -> bool:
        """Recreate the session with new sampling parameters.

        Rejected while a prompt streams or another session swap is pending.
        """
        if self.is_busy:
            logger.warning("[FMChat] Ignoring %s change while %s.", label, self._busy_reason())
            return False
        if self.controller.session is None:
            return False

        self.state.phase = ChatPhase.RECONFIGURING
        try:
            session = await self.controller.reconfigure(config)
        except ConfigurationError as exc:
            self.state.error_banner = f"Failed to update {label}: {exc}"
            session = None
        else:
            if session is not None:
                self.state.stats = self.controller.refresh_stats(session)
                self.state.error_banner = None
        finally:
            self.state.phase = ChatPhase.IDLE

        await self._notify()
        return session is not None

    async def set_temperature(self, temperature: float) -> bool:
        current = self.controller.config
        if current is None:
            return False
        return await self.reconfigure(current.with_temperature(temperature), label="temperature")

    async def set_top_k(self, top_k: int) -> bool:
        current = self.controller.config
        if current is None:
            return False
        return await self.reconfigure(current.with_top_k(top_k), label="top-K")

    async def clear(self) -> bool:
        """Drop the conversation and start a fresh session.

        Leaves exactly one greeting turn; re-initialization does not add another.
        """
        if self.is_busy:
            logger.warning("[FMChat] Ignoring clear while %s.", self._busy_reason())
            return False

        self.state.phase = ChatPhase.RECONFIGURING
        try:
            await self.controller.destroy()
            self.state.transcript.reset(self.settings.cleared_greeting)
            self.state.raw_response = ""
            self.state.stats = Stats.empty()
            ok = await self._initialize()
            if ok:
                self.state.error_banner = None
        finally:
            self.state.phase = ChatPhase.IDLE
        await self._notify()
        return ok

    def _busy_reason(self) -> str:
        if self.is_sending:
            return "a response is streaming"
        return "the session is being replaced"

    def toggle_raw(self) -> bool:
        self.state.show_raw = not self.state.show_raw
        return self.state.show_raw

    async def close(self) -> None:
        """Release the live session. A prompt still streaming ends as failed."""
        await self.controller.destroy()
        await self._notify()
