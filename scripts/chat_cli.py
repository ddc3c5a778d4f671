"""Interactive terminal chat against the configured remote model."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from chat_dispatch.client import create_from_config  # noqa: E402
from chat_dispatch.config import get_persona, load_config  # noqa: E402
from chat_dispatch.dispatch import DispatchPolicy, SubmitOutcome  # noqa: E402
from chat_dispatch.session import SessionRegistry  # noqa: E402
from chat_dispatch.sink import JsonlTranscriptSink  # noqa: E402
from chat_dispatch.transcript import Role  # noqa: E402


async def run(config_path: str | None) -> None:
    cfg = load_config(config_path)
    sink_dir = (cfg.get("transcript") or {}).get("sink_dir")
    client = create_from_config(cfg)
    registry = SessionRegistry(
        client,
        persona=get_persona(cfg),
        policy=DispatchPolicy.from_config(cfg),
        sink=JsonlTranscriptSink(sink_dir) if sink_dir else None,
    )
    session = registry.create(ready=True)

    def on_busy(busy: bool) -> None:
        if busy:
            print("... composing", flush=True)

    session.controller.busy.subscribe(on_busy)

    print(f"Session {session.id}. Type a message (Ctrl-D to quit).")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            outcome = await session.controller.submit(line)
            if outcome is not SubmitOutcome.COMPLETED:
                continue
            last = session.log.snapshot()[-1]
            if last.role is Role.ASSISTANT:
                print(last.content)
    finally:
        await registry.close_all()
        await client.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the remote model from a terminal.")
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Log retries and turn lifecycle")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    try:
        asyncio.run(run(args.config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
