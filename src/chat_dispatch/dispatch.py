"""Turn dispatch: one user submission in, one assistant message out.

The controller owns the lifecycle of a turn. It appends the user message,
raises the busy signal, calls the remote client with exponential backoff and
always finishes by appending exactly one assistant message (the reply, a
placeholder for a reply-less success, or the fallback once retries are
exhausted).

Suspension points are the remote call, the backoff sleep and, when a sink is
configured, the transcript writes. Turns run inside an :class:`asyncio.Task` so
:meth:`DispatchController.aclose` can cancel one mid-flight, including while it
is backing off.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .client import ReplyTransportError
from .transcript import DEFAULT_WINDOW, Message, Role, TranscriptLog, window

logger = logging.getLogger(__name__)

FALLBACK_TEXT = "The service is unreachable right now. Please try again shortly."
PLACEHOLDER_TEXT = "I didn't understand that. Could you rephrase?"

ADMISSION_REJECT = "reject"
ADMISSION_QUEUE = "queue"


# -----------------------------
# Collaborator protocols
# -----------------------------
class ReplyClient(Protocol):
    def generate(self, persona_instruction: str, context_text: str, current_input: str) -> Awaitable[Optional[str]]:
        ...


class Readiness(Protocol):
    @property
    def is_ready(self) -> bool:
        ...


# -----------------------------
# Types
# -----------------------------
class SubmitOutcome(str, enum.Enum):
    COMPLETED = "completed"
    IGNORED_EMPTY = "ignored_empty"
    IGNORED_NOT_READY = "ignored_not_ready"
    REJECTED_BUSY = "rejected_busy"
    CANCELLED = "cancelled"


class TurnPhase(str, enum.Enum):
    STARTED = "started"
    ATTEMPT_FAILED = "attempt_failed"
    BACKING_OFF = "backing_off"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TurnEvent:
    phase: TurnPhase
    attempt: int = 0
    delay: float = 0.0
    error: Optional[str] = None


@dataclass
class DispatchAttempt:
    retry_count: int = 0
    last_error: Optional[BaseException] = None


@dataclass
class DispatchPolicy:
    """Retry, windowing and admission settings for a controller."""
    context_turns: int = DEFAULT_WINDOW
    max_retries: int = 5            # retries after the first attempt
    base_delay: float = 1.0         # seconds; delay = base_delay * 2**attempt
    admission: str = ADMISSION_REJECT
    fallback_text: str = FALLBACK_TEXT
    placeholder_text: str = PLACEHOLDER_TEXT

    def __post_init__(self) -> None:
        if self.admission not in (ADMISSION_REJECT, ADMISSION_QUEUE):
            raise ValueError(f"admission must be {ADMISSION_REJECT!r} or {ADMISSION_QUEUE!r}, got {self.admission!r}")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    def backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "DispatchPolicy":
        d = (cfg or {}).get("dispatch", {}) or {}
        return cls(
            context_turns=int(d.get("context_turns", DEFAULT_WINDOW)),
            max_retries=int(d.get("max_retries", 5)),
            base_delay=float(d.get("base_delay", 1.0)),
            admission=str(d.get("admission", ADMISSION_REJECT)),
            fallback_text=str(d.get("fallback_text") or FALLBACK_TEXT),
            placeholder_text=str(d.get("placeholder_text") or PLACEHOLDER_TEXT),
        )


# -----------------------------
# Busy signal
# -----------------------------
class BusySignal:
    """Boolean "composing" flag owned by one controller."""

    def __init__(self) -> None:
        self._value = False
        self._listeners: List[Callable[[bool], None]] = []

    @property
    def value(self) -> bool:
        return self._value

    def __bool__(self) -> bool:
        return self._value

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Register ``listener(value)`` for changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set(self, value: bool) -> None:
        if value == self._value:
            return
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("busy listener failed")


# -----------------------------
# Controller
# -----------------------------
def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DispatchController:
    """Runs user turns against a :class:`ReplyClient` and records them in a log."""

    def __init__(
        self,
        client: ReplyClient,
        *,
        persona: str = "",
        log: Optional[TranscriptLog] = None,
        readiness: Optional[Readiness] = None,
        policy: Optional[DispatchPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.client = client
        self.persona = persona
        self.log = log if log is not None else TranscriptLog()
        self.readiness = readiness
        self.policy = policy or DispatchPolicy()
        self.busy = BusySignal()
        self._sleep = sleep
        self._clock = clock
        self._gate = asyncio.Lock()
        self._current: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[TurnEvent], None]] = []
        self._closed = False

    # --------- observers ----------
    def subscribe(self, listener: Callable[[TurnEvent], None]) -> Callable[[], None]:
        """Register ``listener(event)`` for turn events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def closed(self) -> bool:
        return self._closed

    def _ready(self) -> bool:
        return self.readiness is None or bool(self.readiness.is_ready)

    def _emit(self, event: TurnEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("turn listener failed on %s", event.phase.value)

    # --------- core API ----------
    async def submit(self, text: str) -> SubmitOutcome:
        """Run one complete turn for ``text``.

        Empty input, a session that is not ready, and (under the ``reject``
        admission policy) a turn already in flight all return immediately
        with no side effects. Otherwise the call returns once the assistant
        message for this turn has been appended.

        Cancelling the caller does not cancel the turn: it still runs to its
        assistant message and holds the admission gate until then. Only
        :meth:`aclose` aborts a turn in flight.
        """
        raw = text or ""
        trimmed = raw.strip()
        if not trimmed:
            return SubmitOutcome.IGNORED_EMPTY
        if self._closed or not self._ready():
            return SubmitOutcome.IGNORED_NOT_READY
        if self.policy.admission == ADMISSION_REJECT and self._gate.locked():
            return SubmitOutcome.REJECTED_BUSY

        await self._gate.acquire()
        # State may have changed while queued behind another turn.
        if self._closed or not self._ready():
            self._gate.release()
            return SubmitOutcome.IGNORED_NOT_READY

        task = asyncio.create_task(self._run_turn(trimmed, raw))
        self._current = task
        task.add_done_callback(self._turn_done)
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._closed and task.cancelled():
                return SubmitOutcome.CANCELLED
            raise
        return SubmitOutcome.COMPLETED

    async def aclose(self) -> None:
        """Stop admitting turns and cancel the one in flight, if any."""
        self._closed = True
        task = self._current
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

    # --------- internals ----------
    def _turn_done(self, task: asyncio.Task) -> None:
        if self._current is task:
            self._current = None
        self._gate.release()

    async def _run_turn(self, text: str, raw: str) -> None:
        # The new input travels as the explicit current turn, so the window
        # is taken before it is appended.
        context = window(self.log, self.policy.context_turns)
        user_message = self.log.append(Message(Role.USER, text, self._clock()))
        self.busy.set(True)
        self._emit(TurnEvent(TurnPhase.STARTED))
        logger.info("turn started for %s (%d chars)", self.log.session_id, len(text))
        try:
            await self.log.persist(user_message)
            reply = await self._deliver(context, raw)
            await self.log.record(Message(Role.ASSISTANT, reply, self._clock()))
        except asyncio.CancelledError:
            logger.info("turn cancelled for %s", self.log.session_id)
            self._emit(TurnEvent(TurnPhase.CANCELLED))
            raise
        finally:
            self.busy.set(False)

    async def _deliver(self, context: str, text: str) -> str:
        attempt = DispatchAttempt()
        while True:
            try:
                reply = await self.client.generate(self.persona, context, text)
            except Exception as e:
                attempt.last_error = e
                self._emit(TurnEvent(TurnPhase.ATTEMPT_FAILED, attempt.retry_count, error=str(e)))
                if attempt.retry_count >= self.policy.max_retries:
                    logger.error(
                        "turn exhausted for %s after %d attempts: %s",
                        self.log.session_id, attempt.retry_count + 1, e,
                    )
                    self._emit(TurnEvent(TurnPhase.EXHAUSTED, attempt.retry_count, error=str(e)))
                    return self.policy.fallback_text

                delay = self.policy.backoff(attempt.retry_count)
                logger.warning(
                    "reply retry %d for %s: %s (sleep %.2fs)",
                    attempt.retry_count + 1, self.log.session_id, e, delay,
                    exc_info=not isinstance(e, ReplyTransportError),
                )
                self._emit(TurnEvent(TurnPhase.BACKING_OFF, attempt.retry_count, delay=delay))
                await self._sleep(delay)
                attempt.retry_count += 1
                continue

            if reply is None:
                logger.warning("empty reply for %s, using placeholder", self.log.session_id)
                reply = self.policy.placeholder_text
            logger.info("turn resolved for %s after %d attempt(s)", self.log.session_id, attempt.retry_count + 1)
            self._emit(TurnEvent(TurnPhase.RESOLVED, attempt.retry_count))
            return reply
