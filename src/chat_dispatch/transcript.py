"""In-memory, append-only conversation transcript and context windowing."""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 5


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single transcript entry."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "ts": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "Message":
        ts = row.get("ts")
        timestamp = datetime.fromisoformat(ts) if ts else _utc_now()
        if timestamp.tzinfo is None:
            # Rows written without an offset are UTC.
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            role=Role(row["role"]),
            content=str(row.get("content") or ""),
            timestamp=timestamp,
        )


class TranscriptSink(Protocol):
    """Durable write-through target for appended messages."""

    def write(self, session_id: str, message: Message) -> None:
        ...


# -----------------------------
# TranscriptLog
# -----------------------------
class TranscriptLog:
    """Ordered, append-only sequence of :class:`Message`.

    Only the dispatch controller appends; any number of readers may take
    snapshots. Timestamps never go backwards: an entry stamped earlier than
    its predecessor is clamped to the predecessor's timestamp.

    An optional ``sink`` receives messages passed to :meth:`persist` (or
    :meth:`record`). The write runs in a worker thread so the event loop is
    not blocked; sink failures are logged and never interrupt the turn.
    """

    def __init__(self, session_id: str = "default", *, sink: Optional[TranscriptSink] = None) -> None:
        self.session_id = session_id
        self._sink = sink
        self._messages: list[Message] = []

    def append(self, message: Message) -> Message:
        if self._messages and message.timestamp < self._messages[-1].timestamp:
            message = replace(message, timestamp=self._messages[-1].timestamp)
        self._messages.append(message)
        return message

    async def persist(self, message: Message) -> None:
        """Write an already appended message to the sink, if one is configured."""
        if self._sink is None:
            return
        try:
            await asyncio.to_thread(self._sink.write, self.session_id, message)
        except Exception:
            # Non-fatal
            logger.warning("transcript sink write failed for %s", self.session_id, exc_info=True)

    async def record(self, message: Message) -> Message:
        """Append ``message`` and write it to the sink."""
        message = self.append(message)
        await self.persist(message)
        return message

    def snapshot(self) -> Tuple[Message, ...]:
        """Return the current ordered sequence as an immutable tuple."""
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())


# -----------------------------
# Context window
# -----------------------------
def window(log: TranscriptLog | Tuple[Message, ...], n: int = DEFAULT_WINDOW) -> str:
    """Return the content of the last ``n`` entries, one per line, oldest first.

    No role labels are added. An empty log (or ``n <= 0``) yields ``""``.
    """
    items = log.snapshot() if isinstance(log, TranscriptLog) else tuple(log)
    if n <= 0 or not items:
        return ""
    return "\n".join(m.content for m in items[-n:])
