"""Entry point: python -m ragstore [serve|search|upsert|context]

- No args / "serve": MCP server over stdio (production)
- "search":          One-shot search, prints JSON (development)
- "upsert":          One-shot store, prints JSON (development)
- "context":         One-shot get_context, prints JSON (development)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from ragstore.config import load_config
from ragstore.memory.engine import MemoryEngine, build_engine
from ragstore.memory.errors import RagStoreError

USAGE = """\
Usage: python -m ragstore [serve|search|upsert|context]
  serve                      MCP server over stdio (default)
  search <query> [context]   Search project memory
  upsert <type> <content>    Store an item
  context <scope>            Get context (current|historical|decisions)"""


def _setup_logging(level: str) -> None:
    # stdout carries the protocol, so logs go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_serve() -> None:
    """MCP server mode."""
    config = load_config()
    _setup_logging(config.log_level)

    from ragstore.server import RagStoreServer

    server = RagStoreServer(build_engine(config))
    try:
        asyncio.run(server.serve_stdio())
    except KeyboardInterrupt:
        pass


async def _one_shot(engine: MemoryEngine, cmd: str, args: list[str]) -> dict:
    await engine.start()
    try:
        if cmd == "search":
            result = await engine.search(args[0], args[1] if len(args) > 1 else None)
        elif cmd == "upsert":
            result = await engine.upsert(" ".join(args[1:]), args[0])
        else:
            result = await engine.get_context(args[0])
        return result.to_payload()
    finally:
        await engine.close()


def _run_command(cmd: str, args: list[str]) -> None:
    """One-shot command mode."""
    required = 2 if cmd == "upsert" else 1
    if len(args) < required:
        print(USAGE)
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)

    try:
        payload = asyncio.run(_one_shot(build_engine(config), cmd, args))
    except RagStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    if cmd == "serve":
        _run_serve()
    elif cmd in ("search", "upsert", "context"):
        _run_command(cmd, sys.argv[2:])
    else:
        print(USAGE)
        sys.exit(1)


if __name__ == "__main__":
    main()
