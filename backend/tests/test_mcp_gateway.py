"""Tests for the MCP tool gateway (service level)."""

import pytest

from knowledge_hub.core.exceptions import MethodNotFound
from knowledge_hub.service.mcp_gateway import (
    INVALID_PARAMS,
    NO_RESULTS_MESSAGE,
    PROTOCOL_VERSION,
    TOOL_EXECUTION_ERROR,
    ToolGateway,
)
from knowledge_hub.service.vector_store import ChunkRecord

from conftest import FakeEmbedder

DOC = "ESP32 deep sleep current"


@pytest.fixture
def gateway(store, embedder):
    return ToolGateway(store, embedder, threshold=0.7, limit=3, keepalive_seconds=0.01)


async def add_doc(store, embedder, kb, content=DOC):
    await store.insert_chunks([
        ChunkRecord(knowledge_base_id=kb.id, content=content, source="esp32.md", embedding=await embedder.embed(content))
    ])


def call(name="query_knowledge", request_id=1, **arguments):
    return {"jsonrpc": "2.0", "id": request_id, "method": "tools/call", "params": {"name": name, "arguments": arguments}}


async def test_initialize(gateway):
    response = await gateway.handle({"jsonrpc": "2.0", "id": 0, "method": "initialize", "params": {}})
    assert response["result"]["protocolVersion"] == PROTOCOL_VERSION
    assert "tools" in response["result"]["capabilities"]


async def test_notifications_have_no_response(gateway):
    assert await gateway.handle({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None


async def test_tools_list(gateway):
    response = await gateway.handle({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    tool = response["result"]["tools"][0]
    assert tool["name"] == "query_knowledge"
    assert tool["inputSchema"]["required"] == ["subject", "query"]


async def test_unknown_method_raises(gateway):
    with pytest.raises(MethodNotFound):
        await gateway.handle({"jsonrpc": "2.0", "id": 3, "method": "resources/list"})


async def test_query_returns_matching_content(gateway, store, embedder, kb):
    await add_doc(store, embedder, kb)

    response = await gateway.handle(call(subject="esp32", query=DOC))
    assert response["id"] == 1
    assert response["result"]["content"] == [{"type": "text", "text": DOC}]


async def test_missing_subject_is_a_successful_result(gateway):
    response = await gateway.handle(call(subject="Math", query="derivative"))
    assert "error" not in response
    assert response["result"]["content"][0]["text"] == "Subject 'Math' not found."


async def test_no_results_above_threshold(gateway, kb):
    response = await gateway.handle(call(subject="ESP32", query="something unrelated"))
    assert response["result"]["content"][0]["text"] == NO_RESULTS_MESSAGE


async def test_exact_title_wins_over_substring(gateway, store, embedder, kb):
    newer = await store.create_knowledge_base("ESP32 Advanced")
    await add_doc(store, embedder, kb, "original board notes")
    await add_doc(store, embedder, newer, "advanced board notes")

    assert (await gateway.resolve_subject("esp32")).id == kb.id
    assert (await gateway.resolve_subject("esp")).id == newer.id


@pytest.mark.parametrize("arguments", [{}, {"subject": "ESP32"}, {"subject": "", "query": "x"}, {"subject": "ESP32", "query": "  "}])
async def test_missing_arguments_are_invalid_params(gateway, kb, arguments):
    response = await gateway.handle(call(**arguments))
    assert response["error"]["code"] == INVALID_PARAMS


async def test_unknown_tool_is_invalid_params(gateway):
    response = await gateway.handle(call(name="delete_everything", subject="a", query="b"))
    assert response["error"]["code"] == INVALID_PARAMS


async def test_embedding_failure_is_tool_execution_error(store, kb):
    gateway = ToolGateway(store, FakeEmbedder(fail_on={"boom": True}))
    response = await gateway.handle(call(subject="ESP32", query="boom"))
    assert response["error"]["code"] == TOOL_EXECUTION_ERROR


async def test_sse_stream_starts_with_endpoint_and_tools(gateway):
    events = gateway.sse_events()
    first = await events.__anext__()
    second = await events.__anext__()
    ping = await events.__anext__()
    await events.aclose()

    assert first.startswith("event: endpoint\n")
    assert second.startswith("event: tools/list_changed\n")
    assert '"query_knowledge"' in second
    assert ping == ": ping\n\n"


@pytest.mark.parametrize("arguments", [["ESP32", "pins"], "ESP32 pins", 42])
async def test_non_object_arguments_are_invalid_params(gateway, kb, arguments):
    message = {
        "jsonrpc": "2.0",
        "id": 9,
        "method": "tools/call",
        "params": {"name": "query_knowledge", "arguments": arguments},
    }
    response = await gateway.handle(message)
    assert response["id"] == 9
    assert response["error"]["code"] == INVALID_PARAMS
