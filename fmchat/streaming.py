"""
Stream aggregation.

The host streams *cumulative* snapshots: every chunk is the whole answer so
far. :class:`StreamAggregator` turns such a stream into a sequence of
:class:`AggregateUpdate` values, always replacing the current answer instead
of concatenating. Failures of any kind end the sequence with one terminal
``FAILED`` update whose content is ``"Error: <message>"``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass
from typing import Literal

from .exceptions import GenerationError, InvariantViolation, describe_error

logger = logging.getLogger("fmchat")

ERROR_PREFIX = "Error: "


class StreamStatus(enum.Enum):
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class AggregateUpdate:
    content: str
    status: StreamStatus = StreamStatus.STREAMING
    error: GenerationError | None = None

    @property
    def terminal(self) -> bool:
        return self.status is not StreamStatus.STREAMING


def format_error(message: str) -> str:
    return f"{ERROR_PREFIX}{message}"


class StreamAggregator:
    """Folds one prompt's chunk stream into cumulative updates.

    Args:
        mode: ``"cumulative"`` (default) treats every chunk as the full answer;
            ``"delta"`` appends chunks for hosts that emit increments.
        first_chunk_timeout: seconds to wait for the first chunk, or None.
        idle_timeout: seconds to wait between later chunks, or None.
        is_live: checked after each chunk; returning False fails the stream,
            which is how session destruction cancels an in-flight prompt.
        debug_timing: log elapsed time and throughput when the stream ends.
    """

    def __init__(
        self,
        mode: Literal["cumulative", "delta"] = "cumulative",
        first_chunk_timeout: float | None = None,
        idle_timeout: float | None = None,
        is_live: Callable[[], bool] | None = None,
        debug_timing: bool = False,
    ) -> None:
        if mode not in ("cumulative", "delta"):
            raise ValueError(f"mode must be 'cumulative' or 'delta'; got '{mode}'")
        self.mode = mode
        self.first_chunk_timeout = first_chunk_timeout
        self.idle_timeout = idle_timeout
        self.is_live = is_live
        self.debug_timing = debug_timing
        self.final: AggregateUpdate | None = None
        self._consumed = False

    def _fold(self, buffer: str, chunk: str) -> tuple[str, str]:
        if self.mode == "delta":
            buffer += chunk
            return buffer.strip(), buffer
        return chunk.strip(), buffer

    async def _next_chunk(self, iterator: AsyncIterator[str], first: bool) -> str:
        timeout = self.first_chunk_timeout if first else self.idle_timeout
        if timeout is None:
            return await iterator.__anext__()
        try:
            return await asyncio.wait_for(iterator.__anext__(), timeout=timeout)
        except TimeoutError as exc:
            label = "first response chunk" if first else "response stream"
            raise TimeoutError(f"Timed out waiting for {label} after {timeout:.0f}s.") from exc

    def _fail(self, exc: BaseException) -> AggregateUpdate:
        error = exc if isinstance(exc, GenerationError) else GenerationError(describe_error(exc))
        if error is not exc:
            error.__cause__ = exc
        logger.error(f"[FMChat Stream] Generation failed. Error: {error}")
        return AggregateUpdate(format_error(str(error)), StreamStatus.FAILED, error)

    async def consume(self, stream: AsyncIterable[str]) -> AsyncIterator[AggregateUpdate]:
        """Yield one update per chunk, then exactly one terminal update."""
        if self._consumed:
            raise InvariantViolation("StreamAggregator.consume() is not restartable")
        self._consumed = True

        content = ""
        buffer = ""
        chunks = 0
        start_time = time.perf_counter()
        iterator: AsyncIterator[str] | None = None

        try:
            iterator = aiter(stream)
            while True:
                try:
                    chunk = await self._next_chunk(iterator, first=chunks == 0)
                except StopAsyncIteration:
                    break
                if self.is_live is not None and not self.is_live():
                    raise GenerationError("Session was destroyed.")
                chunks += 1
                content, buffer = self._fold(buffer, str(chunk))
                yield AggregateUpdate(content)
        except Exception as exc:
            self.final = self._fail(exc)
            yield self.final
            return
        finally:
            aclose = getattr(iterator, "aclose", None) if iterator is not None else None
            if aclose is not None:
                # Release the host generator on early stop or failure; no-op once exhausted.
                try:
                    await aclose()
                except Exception:
                    logger.debug("[FMChat Stream] Ignoring error while closing stream.", exc_info=True)

        if self.debug_timing:
            elapsed = time.perf_counter() - start_time
            chars_per_sec = len(content) / elapsed if elapsed > 0 else 0
            logger.info(
                f"[FMChat Stream] {chunks} chunks in {elapsed:.3f}s. "
                f"Size: {len(content)} chars. Throughput: {chars_per_sec:.0f} chars/sec."
            )

        self.final = AggregateUpdate(content, StreamStatus.DONE)
        yield self.final
