"""Async client for a remote generateContent-style text endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.5-flash-preview-09-2025"


@dataclass
class RemoteConfig:
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    api_key: str = ""
    timeout: float = 30.0

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.model}:generateContent"


class ReplyTransportError(Exception):
    """The remote call did not complete successfully (network, HTTP status, bad body)."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


def build_payload(persona_instruction: str, context_text: str, current_input: str) -> Dict[str, Any]:
    """Build the JSON request body for one turn."""
    text = f"previous conversation: {context_text}\nUser: {current_input}"
    return {
        "contents": [{"parts": [{"text": text}]}],
        "systemInstruction": {"parts": [{"text": persona_instruction}]},
    }


def extract_reply(data: Any) -> Optional[str]:
    """Return ``candidates[0].content.parts[0].text`` or None when absent/empty."""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(text, str) or not text:
        return None
    return text


# -----------------------------
# Remote reply client
# -----------------------------

class RemoteReplyClient:
    """One POST per :meth:`generate` call. No caching, no retries.

    Retrying is the dispatch controller's job, so calling :meth:`generate`
    twice with identical arguments performs two independent remote calls.
    """

    def __init__(self, config: Optional[RemoteConfig] = None, *, http: Optional[httpx.AsyncClient] = None) -> None:
        """
        Parameters
        ----------
        config : RemoteConfig | None
            Endpoint, model and key. Defaults to :class:`RemoteConfig`.
        http : httpx.AsyncClient | None
            Shared client to send requests with. When omitted, one is created
            and owned by this instance (closed by :meth:`aclose`).
        """
        self.config = config or RemoteConfig()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=self.config.timeout)

    async def generate(self, persona_instruction: str, context_text: str, current_input: str) -> Optional[str]:
        """Perform one remote call and return the reply text.

        Returns None when the call succeeded but the body carries no reply
        text. Raises :class:`ReplyTransportError` on any transport failure,
        non-success status or undecodable JSON body.
        """
        payload = build_payload(persona_instruction, context_text, current_input)
        params = {"key": self.config.api_key}
        try:
            r = await self._http.post(
                self.config.endpoint,
                params=params,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ReplyTransportError(f"remote returned HTTP {e.response.status_code}", status=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise ReplyTransportError(f"remote call failed: {e}") from e

        try:
            data = r.json()
        except ValueError as e:
            raise ReplyTransportError("remote returned a non-JSON body", status=r.status_code) from e

        reply = extract_reply(data)
        if reply is None:
            logger.warning("remote reply had no candidate text (status %s)", r.status_code)
        return reply

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any], *, http: Optional[httpx.AsyncClient] = None) -> RemoteReplyClient:
    """Create a RemoteReplyClient from a config dict (e.g., loaded YAML)."""
    remote_cfg = (cfg or {}).get("remote", {}) if isinstance(cfg, dict) else {}
    config = RemoteConfig(
        base_url=str(remote_cfg.get("base_url") or DEFAULT_BASE_URL),
        model=str(remote_cfg.get("model") or DEFAULT_MODEL),
        api_key=str(remote_cfg.get("api_key") or ""),
        timeout=float(remote_cfg.get("timeout", 30.0)),
    )
    return RemoteReplyClient(config, http=http)
