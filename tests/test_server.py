"""Tests for the MCP JSON-RPC request handler."""

import json
from pathlib import Path

import pytest

from ragstore.memory.embedding import HashEmbedding
from ragstore.memory.engine import MemoryEngine
from ragstore.memory.store import FileStore
from ragstore.server import PROTOCOL_VERSION, SERVER_NAME, RagStoreServer
from ragstore.tools.memory_tools import TOOLS


@pytest.fixture
def server(tmp_path: Path) -> RagStoreServer:
    engine = MemoryEngine(FileStore(tmp_path / "memory.json"), embed=HashEmbedding(8))
    return RagStoreServer(engine)


def call(name: str, arguments, req_id: int = 1) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": req_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }


def payload(response: dict):
    return json.loads(response["result"]["content"][0]["text"])


class TestProtocol:
    @pytest.mark.asyncio
    async def test_initialize(self, server: RagStoreServer):
        resp = await server.handle_request({"jsonrpc": "2.0", "id": 1, "method": "initialize"})
        assert resp["id"] == 1
        assert resp["result"]["protocolVersion"] == PROTOCOL_VERSION
        assert resp["result"]["serverInfo"]["name"] == SERVER_NAME

    @pytest.mark.asyncio
    async def test_notification_has_no_response(self, server: RagStoreServer):
        resp = await server.handle_request(
            {"jsonrpc": "2.0", "method": "notifications/initialized"}
        )
        assert resp is None

    @pytest.mark.asyncio
    async def test_ping(self, server: RagStoreServer):
        resp = await server.handle_request({"jsonrpc": "2.0", "id": 7, "method": "ping"})
        assert resp == {"jsonrpc": "2.0", "id": 7, "result": {}}

    @pytest.mark.asyncio
    async def test_tools_list(self, server: RagStoreServer):
        resp = await server.handle_request({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
        names = [t["name"] for t in resp["result"]["tools"]]
        assert names == ["search", "upsert", "get_context"]
        assert resp["result"]["tools"] == TOOLS

    @pytest.mark.asyncio
    async def test_unknown_method(self, server: RagStoreServer):
        resp = await server.handle_request({"jsonrpc": "2.0", "id": 3, "method": "bogus"})
        assert resp["error"]["code"] == -32601


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_upsert_then_search(self, server: RagStoreServer):
        stored = payload(await server.handle_request(
            call("upsert", {"content": "refactor parser", "type": "implementation"})
        ))
        assert stored["success"] is True
        assert stored["id"].startswith("implementation_")
        assert "degraded" not in stored

        found = payload(await server.handle_request(call("search", {"query": "parser"})))
        assert [i["id"] for i in found["items"]] == [stored["id"]]
        assert found["items"][0]["metadata"] == {}

    @pytest.mark.asyncio
    async def test_get_context_decisions(self, server: RagStoreServer):
        await server.handle_request(call("upsert", {"content": "a note", "type": "note"}))
        await server.handle_request(call(
            "upsert", {"content": "use retries for flaky calls", "type": "decision"}
        ))
        ctx = payload(await server.handle_request(call("get_context", {"scope": "decisions"})))
        assert [i["content"] for i in ctx["items"]] == ["use retries for flaky calls"]

    @pytest.mark.asyncio
    async def test_validation_error_is_tool_error(self, server: RagStoreServer):
        resp = await server.handle_request(call("upsert", {"content": "no type"}))
        assert resp["result"]["isError"] is True
        assert "type" in resp["result"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_storage_error_is_tool_error(self, server: RagStoreServer):
        server.engine.store.ensure_exists()
        server.engine.store.path.write_text("not json", encoding="utf-8")
        resp = await server.handle_request(call("search", {"query": "x"}))
        assert resp["result"]["isError"] is True
        assert "Storage error" in resp["result"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server: RagStoreServer):
        resp = await server.handle_request(call("delete", {}))
        assert resp["result"]["isError"] is True

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, server: RagStoreServer):
        resp = await server.handle_request(call("search", ["parser"]))
        assert resp["result"]["isError"] is True


class TestErrorResponses:
    @pytest.mark.asyncio
    async def test_unexpected_tool_failure_is_tool_error(self, server: RagStoreServer, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(server.engine, "search", boom)
        resp = await server.handle_request(call("search", {"query": "x"}, req_id=9))
        assert resp["id"] == 9
        assert resp["result"]["isError"] is True
        assert "disk on fire" in resp["result"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_parse_error_gets_response(self, server: RagStoreServer):
        resp = await server.handle_line("{not json")
        assert resp["id"] is None
        assert resp["error"]["code"] == -32700

    @pytest.mark.asyncio
    async def test_non_object_request_gets_response(self, server: RagStoreServer):
        resp = await server.handle_line("[1, 2, 3]")
        assert resp["id"] is None
        assert resp["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_malformed_params_answer_the_request_id(self, server: RagStoreServer):
        line = json.dumps({"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": ["x"]})
        resp = await server.handle_line(line)
        assert resp["id"] == 4
        assert resp["error"]["code"] == -32603

    @pytest.mark.asyncio
    async def test_valid_line_round_trip(self, server: RagStoreServer):
        resp = await server.handle_line(json.dumps({"jsonrpc": "2.0", "id": 5, "method": "ping"}))
        assert resp == {"jsonrpc": "2.0", "id": 5, "result": {}}
