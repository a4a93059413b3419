"""Runtime settings and logging setup."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger("fmchat")

ENV_PREFIX = "FMCHAT_"

DEFAULT_GREETING = "Hello! I'm Gemini Nano. How can I help you today?"
DEFAULT_CLEARED_GREETING = "Chat cleared. How can I help you?"
DEFAULT_INSTRUCTIONS = "You are a helpful, concise assistant."
PLACEHOLDER_CONTENT = "..."

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"

StreamMode = Literal["cumulative", "delta"]
_STREAM_MODES = ("cumulative", "delta")


@dataclass
class ChatSettings:
    """Knobs for the chat surface.

    Temperature lies within [0, 1] and top-K within 1..top_k_max.
    """

    greeting: str = DEFAULT_GREETING
    cleared_greeting: str = DEFAULT_CLEARED_GREETING
    instructions: str = DEFAULT_INSTRUCTIONS
    stream_mode: StreamMode = "cumulative"
    first_chunk_timeout: float | None = 25.0
    idle_timeout: float | None = 12.0
    top_k_max: int = 40
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.stream_mode not in _STREAM_MODES:
            raise ValueError(
                f"stream_mode must be one of {', '.join(_STREAM_MODES)}; got '{self.stream_mode}'"
            )
        for name in ("first_chunk_timeout", "idle_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be > 0 or None; got {value}")
        if self.top_k_max < 1:
            raise ValueError("top_k_max must be >= 1")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ChatSettings:
        """Build settings from ``FMCHAT_*`` environment variables."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        for key, attr in (
            ("GREETING", "greeting"),
            ("CLEARED_GREETING", "cleared_greeting"),
            ("INSTRUCTIONS", "instructions"),
            ("STREAM_MODE", "stream_mode"),
            ("LOG_LEVEL", "log_level"),
        ):
            value = env.get(ENV_PREFIX + key)
            if value:
                kwargs[attr] = value

        for key, attr in (
            ("FIRST_CHUNK_TIMEOUT", "first_chunk_timeout"),
            ("IDLE_TIMEOUT", "idle_timeout"),
        ):
            raw = env.get(ENV_PREFIX + key)
            if raw is None or raw == "":
                continue
            kwargs[attr] = _parse_timeout(raw, name=ENV_PREFIX + key)

        return cls(**kwargs)  # type: ignore[arg-type]


def _parse_timeout(raw: str, *, name: str) -> float | None:
    if raw.strip().lower() in {"none", "off", "0"}:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds or 'off'; got '{raw}'") from None


def resolve_log_level(level: str | int, fallback: int = logging.WARNING) -> int:
    if isinstance(level, int):
        return level
    if level.isdigit():
        return int(level)
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, int):
        return resolved
    logger.warning(
        "[FMChat] Unsupported log level '%s'; falling back to %s.",
        level,
        logging.getLevelName(fallback),
    )
    return fallback


def setup_logging(level: str | int | None = None) -> None:
    """Configure the root handler; DEBUG adds function names and line numbers."""
    if level is None:
        level = os.environ.get(ENV_PREFIX + "LOG_LEVEL", "WARNING")
    log_level = resolve_log_level(level)
    logging.basicConfig(
        level=log_level,
        format=DEBUG_LOG_FORMAT if log_level <= logging.DEBUG else LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
