"""MCP tools for project memory access.

These functions are exposed as tools to the agent so it can store and
look up learnings, decisions and patterns across sessions.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ragstore.memory.engine import MemoryEngine

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

TOOLS = [
    {
        "name": "search",
        "description": "Search project memory for patterns/solutions",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "context": {
                    "type": "string",
                    "enum": ["architecture", "implementation", "testing"],
                    "description": "Optional context filter",
                },
            },
            "required": ["query"],
        },
    },
    {
        "name": "upsert",
        "description": "Store learning or decision in project memory",
        "inputSchema": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "Content to store"},
                "type": {"type": "string", "description": "Type of content"},
                "metadata": {"type": "object", "description": "Additional metadata"},
            },
            "required": ["content", "type"],
        },
    },
    {
        "name": "get_context",
        "description": "Get full project context",
        "inputSchema": {
            "type": "object",
            "properties": {
                "scope": {
                    "type": "string",
                    "enum": ["current", "historical", "decisions"],
                    "description": "Scope of context to retrieve",
                },
            },
            "required": ["scope"],
        },
    },
]


def get_memory_tools(engine: MemoryEngine) -> dict[str, ToolHandler]:
    """Return a dict of tool_name -> async handler taking the raw arguments dict.

    Handlers return JSON-serializable payloads and let engine errors propagate.
    """

    async def search(args: dict[str, Any]) -> dict[str, Any]:
        result = await engine.search(args.get("query"), args.get("context"))
        return result.to_payload()

    async def upsert(args: dict[str, Any]) -> dict[str, Any]:
        result = await engine.upsert(args.get("content"), args.get("type"), args.get("metadata"))
        return result.to_payload()

    async def get_context(args: dict[str, Any]) -> dict[str, Any]:
        result = await engine.get_context(args.get("scope"))
        return result.to_payload()

    return {
        "search": search,
        "upsert": upsert,
        "get_context": get_context,
    }
