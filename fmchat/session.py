"""
Session lifecycle.

The host ties sampling parameters to session creation, so every parameter
change is a replace-and-destroy. :class:`SessionController` centralizes that
swap: at most one session is live at a time and a replaced handle is always
released.
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass

from .exceptions import (
    ConfigurationError,
    InitializationError,
    Unsupported,
    describe_error,
)
from .protocols import Capability, ModelHost, SessionConfig, SessionHandle

logger = logging.getLogger("fmchat")


@dataclass(frozen=True)
class Stats:
    """Counters and sampling parameters read off a live session."""

    max_tokens: int = 0
    tokens_so_far: int = 0
    tokens_left: int = 0
    temperature: float = 0.0
    top_k: int = 0

    @classmethod
    def empty(cls) -> Stats:
        return cls()

    @classmethod
    def from_session(cls, session: SessionHandle) -> Stats:
        return cls(
            max_tokens=session.max_tokens,
            tokens_so_far=session.tokens_so_far,
            tokens_left=session.tokens_left,
            temperature=session.temperature,
            top_k=session.top_k,
        )

    @property
    def usage_ratio(self) -> float:
        if self.max_tokens <= 0:
            return 0.0
        return self.tokens_so_far / self.max_tokens


class SessionController:
    """Owns the single live model session."""

    def __init__(self, host: ModelHost) -> None:
        self.host = host
        self.capability: Capability | None = None
        self._session: SessionHandle | None = None
        self._config: SessionConfig | None = None
        self._released: weakref.WeakSet[SessionHandle] = weakref.WeakSet()
        self._unsupported: Unsupported | None = None

    @property
    def session(self) -> SessionHandle | None:
        return self._session

    @property
    def config(self) -> SessionConfig | None:
        return self._config

    @property
    def unsupported(self) -> bool:
        return self._unsupported is not None

    def is_live(self, session: SessionHandle | None) -> bool:
        return (
            session is not None and session is self._session and session not in self._released
        )

    async def initialize(self) -> SessionHandle:
        """Probe the host and create a session with its default parameters.

        Raises:
            Unsupported: the host capability is absent. Latched; later calls
                raise again without probing.
            InitializationError: the probe or the session creation failed.
        """
        if self._unsupported is not None:
            raise self._unsupported

        if self._session is not None:
            await self.destroy(self._session)

        try:
            capability = await self.host.probe()
        except Unsupported as exc:
            self._unsupported = exc
            logger.error("[FMChat Session] Host capability unavailable: %s", exc.reason)
            raise
        except Exception as exc:
            raise InitializationError(describe_error(exc)) from exc

        try:
            config = capability.default_config()
            session = await self.host.create(config)
        except Exception as exc:
            logger.error("[FMChat Session] Failed to create initial session: %s", exc)
            raise InitializationError(describe_error(exc)) from exc

        self.capability = capability
        self._commit(session, config)
        logger.info(
            "[FMChat Session] Session created (temperature=%s, top_k=%s).",
            config.temperature,
            config.top_k,
        )
        return session

    async def reconfigure(self, config: SessionConfig) -> SessionHandle | None:
        """Replace the current session with one built from ``config``.

        Returns ``None`` without touching the host when no session is set. The
        replacement is created before the old session is destroyed, so a host
        failure leaves the previous session current and live.
        """
        if self._session is None:
            logger.debug("[FMChat Session] reconfigure() ignored: no session.")
            return None

        try:
            session = await self.host.create(config)
        except Exception as exc:
            logger.warning(
                "[FMChat Session] Reconfiguration to %s failed; keeping previous session. Error: %s",
                config,
                exc,
            )
            raise ConfigurationError(describe_error(exc)) from exc

        # The current session may have changed while create() was pending.
        previous = self._session
        if previous is None:
            logger.info("[FMChat Session] Session destroyed during reconfiguration; discarding.")
            await self._release(session)
            return None

        self._commit(session, config)
        await self._release(previous)
        logger.info(
            "[FMChat Session] Session recreated (temperature=%s, top_k=%s).",
            config.temperature,
            config.top_k,
        )
        return session

    def refresh_stats(self, session: SessionHandle | None = None) -> Stats:
        """Read counters off ``session`` (default: the current one). No host call."""
        target = session if session is not None else self._session
        if target is None:
            return Stats.empty()
        return Stats.from_session(target)

    async def destroy(self, session: SessionHandle | None = None) -> None:
        """Release ``session`` (default: the current one). Safe on ``None`` or repeats."""
        target = session if session is not None else self._session
        if target is None:
            return
        if target is self._session:
            self._session = None
            self._config = None
        await self._release(target)

    def _commit(self, session: SessionHandle, config: SessionConfig) -> None:
        self._session = session
        self._config = config

    async def _release(self, session: SessionHandle) -> None:
        if session in self._released:
            return
        self._released.add(session)
        try:
            await session.destroy()
        except Exception as exc:
            logger.warning("[FMChat Session] Failed to destroy session cleanly: %s", exc)
