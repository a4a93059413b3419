"""
Apple Foundation Models host adapter.

Implements :class:`fmchat.protocols.ModelHost` on top of ``apple_fm_sdk``.
The SDK is imported lazily so the rest of the package (and its tests) work on
machines without it; a missing SDK or an unavailable system model surfaces as
``Unsupported``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from .exceptions import ensure_model_available, require_apple_fm
from .protocols import Capability, SessionConfig

logger = logging.getLogger("fmchat")

# The on-device model ships with a fixed 4096-token context window.
DEFAULT_CONTEXT_TOKENS = 4096
CHARS_PER_TOKEN = 4
DEFAULT_TEMPERATURE = 0.8
DEFAULT_TOP_K = 3


def estimate_tokens(text: str) -> int:
    """Rough token count for budget display; the SDK does not report usage."""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


class AppleFMSession:
    """A ``LanguageModelSession`` plus the token counters the chat surface shows."""

    def __init__(
        self,
        fm: Any,
        session: Any,
        config: SessionConfig,
        max_tokens: int,
        instructions: str = "",
    ) -> None:
        self._fm = fm
        self._session: Any | None = session
        self._config = config
        self._max_tokens = max_tokens
        self._tokens_so_far = min(estimate_tokens(instructions), max_tokens)
        self._destroyed = False

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
        return self._config.temperature

    @property
    def top_k(self) -> int:
        return self._config.top_k

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def _charge(self, text: str) -> None:
        self._tokens_so_far = min(self._max_tokens, self._tokens_so_far + estimate_tokens(text))

    def _generation_options(self) -> Any | None:
        factory = getattr(self._fm, "GenerationOptions", None)
        if factory is None:
            return None
        sampling_mode = getattr(self._fm, "SamplingMode", None)
        random_sampling = getattr(sampling_mode, "random", None)
        if random_sampling is None:
            return factory(temperature=self._config.temperature)
        return factory(
            temperature=self._config.temperature,
            sampling=random_sampling(top=self._config.top_k),
        )

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        if self._destroyed or self._session is None:
            raise RuntimeError("Session was destroyed.")

        options = self._generation_options()
        if options is None:
            snapshots = self._session.stream_response(prompt)
        else:
            snapshots = self._session.stream_response(prompt, options=options)

        self._charge(prompt)
        last = ""
        async for snapshot in snapshots:
            if self._destroyed:
                raise RuntimeError("Session was destroyed during generation.")
            last = str(snapshot)
            yield last
        self._charge(last)

    async def destroy(self) -> None:
        # The SDK frees the session once nothing references it.
        self._destroyed = True
        self._session = None

    def __repr__(self) -> str:
        return (
            f"AppleFMSession(temperature={self.temperature}, top_k={self.top_k}, "
            f"tokens={self.tokens_so_far}/{self.max_tokens}, destroyed={self._destroyed})"
        )


class AppleFMHost:
    """Capability probe and session factory backed by ``SystemLanguageModel``."""

    def __init__(
        self,
        instructions: str = "",
        default_temperature: float = DEFAULT_TEMPERATURE,
        default_top_k: int = DEFAULT_TOP_K,
        max_tokens: int = DEFAULT_CONTEXT_TOKENS,
    ) -> None:
        self.instructions = instructions
        self.default_temperature = default_temperature
        self.default_top_k = default_top_k
        self.max_tokens = max_tokens
        self._fm: Any | None = None
        self._model: Any | None = None

    def _load(self) -> tuple[Any, Any]:
        if self._fm is None or self._model is None:
            fm = require_apple_fm()
            model = fm.SystemLanguageModel()
            ensure_model_available(model, context="fmchat")
            self._fm, self._model = fm, model
        return self._fm, self._model

    async def probe(self) -> Capability:
        self._load()
        logger.debug("[FMChat Host] System language model is available.")
        return Capability(
            default_temperature=self.default_temperature,
            default_top_k=self.default_top_k,
            max_tokens=self.max_tokens,
        )

    async def create(self, config: SessionConfig) -> AppleFMSession:
        fm, model = self._load()
        if self.instructions:
            session = fm.LanguageModelSession(model=model, instructions=self.instructions)
        else:
            session = fm.LanguageModelSession(model=model)
        return AppleFMSession(
            fm,
            session,
            config,
            max_tokens=self.max_tokens,
            instructions=self.instructions,
        )

    def __repr__(self) -> str:
        return f"AppleFMHost(max_tokens={self.max_tokens}, loaded={self._model is not None})"
