"""MCP server: ragStore — project memory over stdio.

Exposes the memory engine as three tools (search, upsert, get_context).

Protocol: JSON-RPC 2.0 over stdio (NDJSON).

Usage:
  python -m ragstore serve
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from ragstore.memory.engine import MemoryEngine
from ragstore.memory.errors import RagStoreError, StorageError, ValidationError
from ragstore.tools.memory_tools import TOOLS, get_memory_tools

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────

SERVER_NAME = "ragStore"
SERVER_VERSION = "1.0.0"
PROTOCOL_VERSION = "2024-11-05"

# ── JSON-RPC 2.0 helpers ─────────────────────────────────────


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def text_result(payload: Any, is_error: bool = False) -> dict:
    if isinstance(payload, str):
        text = payload
    else:
        text = json.dumps(payload, indent=2, ensure_ascii=False)
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


# ── Server ───────────────────────────────────────────────────


class RagStoreServer:
    """Routes JSON-RPC requests to the memory engine's tools."""

    def __init__(self, engine: MemoryEngine) -> None:
        self.engine = engine
        self._tools = get_memory_tools(engine)
        self._pending: set[asyncio.Task] = set()

    async def call_tool(self, tool_name: str, args: dict) -> dict:
        handler = self._tools.get(tool_name)
        if handler is None:
            return text_result(f"Unknown tool: {tool_name}", is_error=True)
        try:
            payload = await handler(args)
        except ValidationError as e:
            return text_result(f"Invalid arguments: {e}", is_error=True)
        except StorageError as e:
            logger.error("Storage failure in %s: %s", tool_name, e)
            return text_result(f"Storage error: {e}", is_error=True)
        except RagStoreError as e:
            return text_result(f"Error: {e}", is_error=True)
        except Exception as e:
            logger.exception("Tool %s failed", tool_name)
            return text_result(f"Internal error: {e}", is_error=True)
        return text_result(payload)

    async def handle_request(self, req: dict) -> dict | None:
        req_id = req.get("id")
        method = req.get("method", "")

        # Notifications (no id) — no response
        if req_id is None:
            if method == "notifications/initialized":
                logger.info("Client initialized")
            return None

        if method == "initialize":
            return jsonrpc_result(req_id, {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            })

        if method == "ping":
            return jsonrpc_result(req_id, {})

        if method == "tools/list":
            return jsonrpc_result(req_id, {"tools": TOOLS})

        if method == "tools/call":
            params = req.get("params") or {}
            tool_name = params.get("name", "")
            args = params.get("arguments") or {}
            if not isinstance(args, dict):
                return jsonrpc_result(
                    req_id, text_result("Invalid arguments: expected an object", is_error=True)
                )
            return jsonrpc_result(req_id, await self.call_tool(tool_name, args))

        return jsonrpc_error(req_id, -32601, f"Method not found: {method}")

    # ── Stdio transport (NDJSON) ─────────────────────────────

    async def handle_line(self, line: str) -> dict | None:
        """Parse one NDJSON line and build its response. Never raises."""
        try:
            req = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Parse error: %s", e)
            return jsonrpc_error(None, -32700, f"Parse error: {e}")
        if not isinstance(req, dict):
            logger.warning("Invalid request: %r", req)
            return jsonrpc_error(None, -32600, "Invalid Request: expected an object")

        logger.debug("<- %s", req.get("method", "?"))
        try:
            return await self.handle_request(req)
        except Exception as e:
            logger.exception("Handler error")
            if req.get("id") is None:
                return None
            return jsonrpc_error(req.get("id"), -32603, f"Internal error: {e}")

    async def _handle_line(self, line: str) -> None:
        response = await self.handle_line(line)
        if response:
            sys.stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
            sys.stdout.flush()

    async def serve_stdio(self) -> None:
        await self.engine.start()
        logger.info("MCP RAG server started (storage=%s)", self.engine.store.path)

        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                line = line.decode("utf-8").strip()
                if not line:
                    continue
                # Each request runs as its own task; the file store serializes writes.
                task = asyncio.create_task(self._handle_line(line))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            if self._pending:
                await asyncio.gather(*self._pending)
        finally:
            await self.engine.close()
