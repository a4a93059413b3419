"""
fmchat: a streaming chat client for on-device language models.

The core owns a single live model session, recreates it whenever sampling
parameters change, folds the host's cumulative token stream into a stable
transcript, and reports token usage read off the session. Presentation is
left to whatever consumes :meth:`ChatOrchestrator.snapshot`; a terminal front
end ships as the ``fmchat`` command.
"""

from .config import ChatSettings
from .exceptions import (
    AppleFMSetupError,
    ConfigurationError,
    FMChatError,
    GenerationError,
    InitializationError,
    InvariantViolation,
    TranscriptIndexError,
    Unsupported,
)
from .host import AppleFMHost
from .orchestrator import ChatOrchestrator, ChatPhase, ChatState, RenderSnapshot
from .protocols import Capability, ModelHost, SessionConfig, SessionHandle
from .session import SessionController, Stats
from .streaming import AggregateUpdate, StreamAggregator, StreamStatus
from .transcript import Role, TranscriptStore, Turn

__all__ = [
    "AggregateUpdate",
    "AppleFMHost",
    "AppleFMSetupError",
    "Capability",
    "ChatOrchestrator",
    "ChatPhase",
    "ChatSettings",
    "ChatState",
    "ConfigurationError",
    "FMChatError",
    "GenerationError",
    "InitializationError",
    "InvariantViolation",
    "ModelHost",
    "RenderSnapshot",
    "Role",
    "SessionConfig",
    "SessionController",
    "SessionHandle",
    "Stats",
    "StreamAggregator",
    "StreamStatus",
    "TranscriptIndexError",
    "TranscriptStore",
    "Turn",
    "Unsupported",
]
