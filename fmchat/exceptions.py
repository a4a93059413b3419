"""
Error taxonomy for fmchat.

Every failure that originates in the host runtime is converted into one of
these types at the boundary that called the host (the session controller or
the stream aggregator). Callers above that boundary never see raw host
exceptions.
"""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Any

_INSTALL_HINT = (
    "fmchat drives the on-device model through the Apple Foundation Models SDK.\n"
    "Install it manually (pip install -e <path-to-python-apple-fm-sdk>) on macOS 26+\n"
    "with Apple Intelligence enabled."
)


class FMChatError(Exception):
    """Base class for all fmchat errors."""


class Unsupported(FMChatError):
    """The host capability is absent. Fatal for the lifetime of the process."""

    def __init__(self, reason: str = "capability not available") -> None:
        super().__init__(reason)
        self.reason = reason


class AppleFMSetupError(Unsupported):
    """The Apple Foundation Models SDK is missing or the system model is unavailable."""

    def __str__(self) -> str:
        return f"[fmchat] Apple Foundation Models unavailable: {self.reason}\n\n{_INSTALL_HINT}"


class InitializationError(FMChatError):
    """The capability is present but the first session could not be created."""


class ConfigurationError(FMChatError):
    """A reconfiguration failed; the previous session is still current."""


class GenerationError(FMChatError):
    """Streaming failed for one prompt. Non-fatal."""


class InvariantViolation(FMChatError):
    """Programmer error: internal state was used in a way it never should be."""


class TranscriptIndexError(InvariantViolation, IndexError):
    """The transcript has no in-progress assistant placeholder to update."""


def describe_error(exc: BaseException) -> str:
    """Human-readable message for an exception, falling back to its type name."""
    message = str(exc).strip()
    return message or type(exc).__name__


def require_apple_fm() -> ModuleType:
    """Import ``apple_fm_sdk`` lazily, raising :class:`AppleFMSetupError` if missing."""
    try:
        return importlib.import_module("apple_fm_sdk")
    except ImportError as exc:
        raise AppleFMSetupError("'apple_fm_sdk' is not installed") from exc


def ensure_model_available(model: Any, context: str = "fmchat") -> None:
    """Raise :class:`AppleFMSetupError` when ``model.is_available()`` reports False."""
    try:
        available, reason = model.is_available()
    except Exception as exc:
        raise AppleFMSetupError(f"{context}: availability check failed: {exc}") from exc
    if not available:
        raise AppleFMSetupError(f"{context}: {reason or 'model not available'}")
