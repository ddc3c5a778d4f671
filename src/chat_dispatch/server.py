"""FastAPI application exposing chat sessions over HTTP."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .client import RemoteReplyClient, create_from_config
from .config import get_persona, load_config
from .dispatch import DispatchPolicy, ReplyClient
from .session import ChatSession, SessionRegistry
from .sink import JsonlTranscriptSink

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class SessionRequest(BaseModel):
    # Identity tokens are verified upstream; the value is only logged as present/absent.
    token: Optional[str] = Field(default=None, description="Optional sign-in token.")


class SessionResponse(BaseModel):
    session_id: str
    ready: bool


class MessageRequest(BaseModel):
    message: str = Field(..., description="Raw user input; blank input is ignored.")


class MessageOut(BaseModel):
    role: str
    content: str
    ts: str


class TranscriptResponse(BaseModel):
    busy: bool
    messages: List[MessageOut]


class SubmitResponse(TranscriptResponse):
    outcome: str


# -----------------------------
# Utilities
# -----------------------------
def _messages(session: ChatSession) -> List[MessageOut]:
    return [MessageOut(**m.to_dict()) for m in session.log.snapshot()]


def _make_sink(cfg: Dict[str, Any]) -> Optional[JsonlTranscriptSink]:
    sink_dir = (cfg.get("transcript") or {}).get("sink_dir")
    return JsonlTranscriptSink(sink_dir) if sink_dir else None


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    client: Optional[ReplyClient] = None,
    registry: Optional[SessionRegistry] = None,
) -> FastAPI:
    cfg = load_config(config_path)

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    # Services
    client = client or create_from_config(cfg)
    registry = registry or SessionRegistry(
        client,
        persona=get_persona(cfg),
        policy=DispatchPolicy.from_config(cfg),
        sink=_make_sink(cfg),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await registry.close_all()
        if isinstance(client, RemoteReplyClient):
            await client.aclose()

    app = FastAPI(title="Chat Dispatch Server", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.registry = registry

    def _session_or_404(session_id: str) -> ChatSession:
        session = registry.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Unknown session.")
        return session

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "sessions": len(registry)}

    @app.post("/sessions", response_model=SessionResponse)
    def create_session(req: Optional[SessionRequest] = None) -> SessionResponse:
        # Anonymous and token sign-in both end in a ready session here.
        session = registry.create(ready=True)
        logger.info("session %s signed in (%s)", session.id, "token" if req and req.token else "anonymous")
        return SessionResponse(session_id=session.id, ready=session.readiness.is_ready)

    @app.post("/sessions/{session_id}/messages", response_model=SubmitResponse)
    async def post_message(session_id: str, req: MessageRequest) -> SubmitResponse:
        session = _session_or_404(session_id)
        outcome = await session.controller.submit(req.message)
        return SubmitResponse(outcome=outcome.value, busy=session.busy, messages=_messages(session))

    @app.get("/sessions/{session_id}/transcript", response_model=TranscriptResponse)
    def get_transcript(session_id: str) -> TranscriptResponse:
        session = _session_or_404(session_id)
        return TranscriptResponse(busy=session.busy, messages=_messages(session))

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str) -> Dict[str, Any]:
        if not await registry.close(session_id):
            raise HTTPException(status_code=404, detail="Unknown session.")
        return {"ok": True}

    return app
