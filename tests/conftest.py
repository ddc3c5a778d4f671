"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from chat_dispatch.client import ReplyTransportError  # noqa: E402


class ScriptedClient:
    """Reply client that plays back a script of replies and failures.

    Each script item is a reply string, ``None`` (reply-less success) or an
    exception instance to raise. Once the script runs out the last item is
    repeated. Every call is recorded as ``(persona, context, current_input)``.
    """

    def __init__(self, *script: Union[str, None, BaseException]) -> None:
        self.script = list(script) or ["ok"]
        self.calls: List[Tuple[str, str, str]] = []

    async def generate(self, persona_instruction: str, context_text: str, current_input: str) -> Optional[str]:
        self.calls.append((persona_instruction, context_text, current_input))
        idx = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[idx]
        if isinstance(item, BaseException):
            raise item
        return item


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns immediately and records delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []
        self.busy_during: List[bool] = []
        self.controller = None

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.controller is not None:
            self.busy_during.append(self.controller.busy.value)


@pytest.fixture
def transport_error() -> ReplyTransportError:
    return ReplyTransportError("remote returned HTTP 503", status=503)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in list(os.environ):
        if var == "CHAT_DISPATCH_CONFIG" or var.startswith("CHAT_DISPATCH__"):
            monkeypatch.delenv(var, raising=False)
    yield
