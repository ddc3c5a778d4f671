"""Configuration loading for the dispatch service.

Layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable CHAT_DISPATCH_CONFIG
3. Fallback to "config/default.yaml"

Environment variables with prefix ``CHAT_DISPATCH__`` override individual
keys (e.g., CHAT_DISPATCH__REMOTE__API_KEY=abc123).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHAT_DISPATCH__"

DEFAULT_PERSONA = "You are a friendly, concise conversational assistant."

DEFAULTS: Dict[str, Any] = {
    "remote": {
        "base_url": "https://generativelanguage.googleapis.com/v1beta/models",
        "model": "gemini-2.5-flash-preview-09-2025",
        "api_key": "",
        "timeout": 30.0,
    },
    "persona": {"instruction": DEFAULT_PERSONA},
    "dispatch": {
        "context_turns": 5,
        "max_retries": 5,
        "base_delay": 1.0,
        "admission": "reject",
    },
    "transcript": {"sink_dir": None},
    "server": {"cors_origins": ["*"]},
}


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix CHAT_DISPATCH__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., CHAT_DISPATCH__DISPATCH__MAX_RETRIES -> cfg["dispatch"]["max_retries"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        # Attempt to parse simple types (bool, int, float)
        if value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration layered over :data:`DEFAULTS`.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``CHAT_DISPATCH_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Merged configuration dictionary with environment overrides applied.
    """
    if path is None:
        path = os.environ.get("CHAT_DISPATCH_CONFIG", "config/default.yaml")

    cfg = copy.deepcopy(DEFAULTS)
    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("config file not found at %s, using defaults", path_obj)
        return _apply_env_overrides(cfg)

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_merge(cfg, loaded))


def get_persona(cfg: Dict[str, Any]) -> str:
    """Return the persona instruction untouched (no stripping, no templating)."""
    persona = (cfg.get("persona") or {}).get("instruction")
    return DEFAULT_PERSONA if persona is None else str(persona)
