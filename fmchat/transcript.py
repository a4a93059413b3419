"""Ordered chat transcript with a single in-progress assistant slot."""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from .config import PLACEHOLDER_CONTENT
from .exceptions import InvariantViolation, TranscriptIndexError


def utc_now() -> datetime:
    return datetime.now(UTC)


class Role(enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str
    timestamp: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


class TranscriptStore:
    """Append-only log of turns; insertion order is display order.

    While a generation is in flight the last turn is an assistant placeholder
    whose content is replaced wholesale by :meth:`update_last`. After
    :meth:`finalize` it is history like every other turn.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._turns: list[Turn] = []
        self._in_progress = False

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def last(self) -> Turn | None:
        return self._turns[-1] if self._turns else None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    def append_pair(self, user_text: str) -> tuple[Turn, Turn]:
        """Append a user turn and an assistant placeholder, both stamped now."""
        if self._in_progress:
            raise InvariantViolation("an assistant placeholder is already in progress")
        now = self._clock()
        user_turn = Turn(Role.USER, user_text, now)
        placeholder = Turn(Role.ASSISTANT, PLACEHOLDER_CONTENT, now)
        self._turns.extend((user_turn, placeholder))
        self._in_progress = True
        return user_turn, placeholder

    def update_last(self, content: str) -> Turn:
        """Replace the placeholder's content and return the updated turn."""
        if not self._turns:
            raise TranscriptIndexError("update_last() on an empty transcript")
        last = self._turns[-1]
        if last.role is not Role.ASSISTANT or not self._in_progress:
            raise TranscriptIndexError("last turn is not an in-progress assistant placeholder")
        updated = replace(last, content=content)
        self._turns[-1] = updated
        return updated

    def finalize(self) -> Turn | None:
        """Freeze the placeholder into history. No-op when nothing is in progress."""
        if not self._in_progress:
            return None
        self._in_progress = False
        return self._turns[-1]

    def reset(self, greeting: str) -> Turn:
        """Drop every turn and start over with a single assistant greeting."""
        self._turns.clear()
        self._in_progress = False
        turn = Turn(Role.ASSISTANT, greeting, self._clock())
        self._turns.append(turn)
        return turn

    def __repr__(self) -> str:
        return f"TranscriptStore(turns={len(self._turns)}, in_progress={self._in_progress})"
