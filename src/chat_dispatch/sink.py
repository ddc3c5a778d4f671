from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Union

from .transcript import Message

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_dir(p: PathLike) -> Path:
    """Ensure that a directory exists, returning it as a Path."""
    p = Path(p)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create directory {p}: {e}") from e
    return p


def append_jsonl(path: PathLike, item: Dict[str, Any]) -> None:
    """Append a JSON-serializable dict as one line to a JSONL file."""
    try:
        line = json.dumps(item, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize item to JSON: {e}") from e

    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError as e:
        raise OSError(f"Failed to write to {path}: {e}") from e


def read_jsonl(path: PathLike, *, stream: bool = False) -> Iterable[Dict[str, Any]]:
    """Read a JSONL file into memory or stream it line by line.

    Parameters
    ----------
    path : str | Path
        The JSONL file path.
    stream : bool
        If True, yield entries lazily (generator).
        If False, return a full list of entries.
    """
    p = Path(path)
    if not p.exists():
        return [] if not stream else iter(())

    def _iter() -> Generator[Dict[str, Any], None, None]:
        with open(p, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning("Skipping corrupt line %d in %s: %s", line_no, p, e)
                    continue

    return _iter() if stream else list(_iter())


def _safe_session_id(name: str) -> str:
    # Keep it readable but filesystem-safe.
    s = re.sub(r"[^\w.\-@]+", "_", name.strip() or "default")
    return s[:128]


class JsonlTranscriptSink:
    """Append-only per-session transcript files.

    Layout:
        sink_dir/
          <session_id>.jsonl   # one {"role", "content", "ts"} object per line
    """

    def __init__(self, sink_dir: PathLike) -> None:
        self.root = ensure_dir(sink_dir)

    def path_for(self, session_id: str) -> Path:
        return self.root / f"{_safe_session_id(session_id)}.jsonl"

    def write(self, session_id: str, message: Message) -> None:
        append_jsonl(self.path_for(session_id), message.to_dict())

    def load(self, session_id: str) -> List[Message]:
        out: List[Message] = []
        for row in read_jsonl(self.path_for(session_id)):
            try:
                out.append(Message.from_dict(row))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed transcript row in %s: %s", session_id, e)
        return out
