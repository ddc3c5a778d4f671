"""Session bundle: readiness gate, transcript log and dispatch controller."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, Iterator, Optional

from .dispatch import DispatchController, DispatchPolicy, ReplyClient
from .transcript import TranscriptLog, TranscriptSink

logger = logging.getLogger(__name__)


class SessionReadiness:
    """Boolean "identity established" signal set by an external collaborator."""

    def __init__(self, ready: bool = False) -> None:
        self._ready = ready
        self._event: Optional[asyncio.Event] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    def set_ready(self, ready: bool = True) -> None:
        self._ready = ready
        if self._event is not None:
            if ready:
                self._event.set()
            else:
                self._event.clear()

    async def wait(self) -> None:
        """Suspend until the session becomes ready."""
        if self._ready:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()


class ChatSession:
    def __init__(
        self,
        session_id: str,
        client: ReplyClient,
        *,
        persona: str = "",
        policy: Optional[DispatchPolicy] = None,
        sink: Optional[TranscriptSink] = None,
        ready: bool = False,
    ) -> None:
        self.id = session_id
        self.readiness = SessionReadiness(ready)
        self.log = TranscriptLog(session_id, sink=sink)
        self.controller = DispatchController(
            client,
            persona=persona,
            log=self.log,
            readiness=self.readiness,
            policy=policy,
        )

    @property
    def busy(self) -> bool:
        return self.controller.busy.value

    async def close(self) -> None:
        self.readiness.set_ready(False)
        await self.controller.aclose()


class SessionRegistry:
    """Creates and tracks sessions that share one client, persona and policy."""

    def __init__(
        self,
        client: ReplyClient,
        *,
        persona: str = "",
        policy: Optional[DispatchPolicy] = None,
        sink: Optional[TranscriptSink] = None,
    ) -> None:
        self.client = client
        self.persona = persona
        self.policy = policy or DispatchPolicy()
        self.sink = sink
        self._sessions: Dict[str, ChatSession] = {}

    def create(self, session_id: Optional[str] = None, *, ready: bool = True) -> ChatSession:
        sid = session_id or uuid.uuid4().hex
        if sid in self._sessions:
            raise ValueError(f"session already exists: {sid}")
        session = ChatSession(
            sid,
            self.client,
            persona=self.persona,
            policy=self.policy,
            sink=self.sink,
            ready=ready,
        )
        self._sessions[sid] = session
        logger.info("session created: %s (ready=%s)", sid, ready)
        return session

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("session closed: %s", session_id)
        return True

    async def close_all(self) -> None:
        for sid in list(self._sessions):
            await self.close(sid)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[ChatSession]:
        return iter(list(self._sessions.values()))
