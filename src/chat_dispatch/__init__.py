"""Message dispatch core for a chat front-end backed by a remote text model.

Typical usage
-------------
from chat_dispatch import DispatchController, RemoteReplyClient

controller = DispatchController(RemoteReplyClient(), persona="...")
await controller.submit("hello")
controller.log.snapshot()

or, over HTTP:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .client import RemoteConfig, RemoteReplyClient, ReplyTransportError
from .dispatch import (
    BusySignal,
    DispatchController,
    DispatchPolicy,
    SubmitOutcome,
    TurnEvent,
    TurnPhase,
)
from .session import ChatSession, SessionReadiness, SessionRegistry
from .transcript import Message, Role, TranscriptLog, window

__all__ = [
    "BusySignal",
    "ChatSession",
    "DispatchController",
    "DispatchPolicy",
    "Message",
    "RemoteConfig",
    "RemoteReplyClient",
    "ReplyTransportError",
    "Role",
    "SessionReadiness",
    "SessionRegistry",
    "SubmitOutcome",
    "TranscriptLog",
    "TurnEvent",
    "TurnPhase",
    "__version__",
    "get_version",
    "window",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__
