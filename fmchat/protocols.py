"""
Host-facing protocols and value types.

The host runtime is a black box reachable only through a capability probe and
a session factory. Anything that satisfies :class:`CapabilityHost` and
:class:`SessionHost` can drive the chat core; :mod:`fmchat.host` provides the
Apple Foundation Models implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

TEMPERATURE_MIN = 0.0
TEMPERATURE_MAX = 1.0
TOP_K_MIN = 1


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Capability:
    """Default generation parameters reported once by the host."""

    default_temperature: float
    default_top_k: int
    max_tokens: int | None = None

    def default_config(self) -> SessionConfig:
        return SessionConfig(temperature=self.default_temperature, top_k=self.default_top_k)


@dataclass(frozen=True)
class SessionConfig:
    """Sampling parameters a session is created with.

    The host binds these at creation time, so changing either value means
    creating a new session.
    """

    temperature: float
    top_k: int

    def __post_init__(self) -> None:
        if not TEMPERATURE_MIN <= self.temperature <= TEMPERATURE_MAX:
            raise ValueError(
                f"temperature must be within [{TEMPERATURE_MIN}, {TEMPERATURE_MAX}]; "
                f"got {self.temperature}"
            )
        if isinstance(self.top_k, bool) or not isinstance(self.top_k, int):
            raise ValueError(f"top_k must be an integer; got {self.top_k!r}")
        if self.top_k < TOP_K_MIN:
            raise ValueError(f"top_k must be >= {TOP_K_MIN}; got {self.top_k}")

    def with_temperature(self, temperature: float) -> SessionConfig:
        return replace(self, temperature=temperature)

    def with_top_k(self, top_k: int) -> SessionConfig:
        return replace(self, top_k=top_k)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class SessionHandle(Protocol):
    """A host-managed generation context bound to one :class:`SessionConfig`.

    ``tokens_so_far + tokens_left == max_tokens`` is maintained by the host.
    """

    @property
    def max_tokens(self) -> int: ...

    @property
    def tokens_so_far(self) -> int: ...

    @property
    def tokens_left(self) -> int: ...

    @property
    def temperature(self) -> float: ...

    @property
    def top_k(self) -> int: ...

    def stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield cumulative snapshots of the generated text."""
        ...

    async def destroy(self) -> None: ...


@runtime_checkable
class CapabilityHost(Protocol):
    async def probe(self) -> Capability:
        """Return default parameters, or raise ``Unsupported``."""
        ...


@runtime_checkable
class SessionHost(Protocol):
    async def create(self, config: SessionConfig) -> SessionHandle: ...


@runtime_checkable
class ModelHost(CapabilityHost, SessionHost, Protocol):
    """Both halves of the host API, as most runtimes expose them together."""
