"""Tests for the memory tools and the request envelope."""

from __future__ import annotations

import pytest

from kgmem.core import Memory
from kgmem.tools.memory_tools import dispatch, get_memory_tools


@pytest.fixture
def tools(memory: Memory):
    return get_memory_tools(memory)


async def _ok(tools, operation: str, **params):
    response = await dispatch(tools, {"operation": operation, "params": params})
    assert "error" not in response, response
    assert response["operation"] == operation
    return response["result"]


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_unknown_operation(self, tools):
        response = await dispatch(tools, {"operation": "drop_everything", "params": {}})
        assert response == {
            "error": True,
            "code": "UNSUPPORTED_OPERATION",
            "message": "Unsupported operation: drop_everything",
        }

    @pytest.mark.asyncio
    async def test_malformed_request(self, tools):
        assert (await dispatch(tools, ["not", "an", "object"]))["code"] == "VALIDATION_ERROR"
        response = await dispatch(tools, {"operation": "get_entity", "params": "x"})
        assert response["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_missing_required_param(self, tools):
        response = await dispatch(tools, {"operation": "store_entity", "params": {}})
        assert response["error"] is True
        assert response["code"] == "VALIDATION_ERROR"
        assert "Entity is required" in response["message"]

    @pytest.mark.asyncio
    async def test_not_found_is_tagged(self, tools):
        response = await dispatch(tools, {"operation": "get_entity", "params": {"id": "nope"}})
        assert response["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, memory: Memory, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(memory.store, "get", boom)
        tools = get_memory_tools(memory)
        response = await dispatch(tools, {"operation": "get_entity", "params": {"id": "x"}})
        assert response == {"error": True, "code": "INTERNAL_ERROR", "message": "disk on fire"}

    def test_every_operation_registered(self, tools):
        assert set(tools) == {
            "store_entity", "get_entity", "update_entity", "delete_entity", "list_entities",
            "create_relationship", "get_relationship", "update_relationship",
            "delete_relationship", "list_relationships", "traverse_graph",
            "find_related", "find_common_connections",
            "search_by_text", "search_by_metadata", "search_by_vector", "search",
            "semantic_search", "find_entities_by_agent_id", "get_agent_memory",
            "store_agent_memory",
        }


class TestOperations:
    @pytest.mark.asyncio
    async def test_entity_lifecycle(self, tools):
        stored = await _ok(tools, "store_entity", entity={"type": "note", "content": "hi"})
        assert stored["type"] == "note"

        fetched = await _ok(tools, "get_entity", id=stored["id"])
        assert fetched == stored

        updated = await _ok(tools, "update_entity", id=stored["id"], updates={"content": "bye"})
        assert updated["content"] == "bye"

        page = await _ok(tools, "list_entities", type="note")
        assert page["total"] == 1
        assert page["limit"] == 100

        assert await _ok(tools, "delete_entity", id=stored["id"]) is True
        assert await _ok(tools, "delete_entity", id=stored["id"]) is False

    @pytest.mark.asyncio
    async def test_graph_operations(self, tools):
        for entity_id in ("a", "b"):
            await _ok(tools, "store_entity", entity={"id": entity_id, "type": "node"})
        rel = await _ok(
            tools, "create_relationship", relationship={"sourceId": "a", "targetId": "b", "type": "knows"}
        )
        assert set(rel) >= {"id", "sourceId", "targetId", "type", "properties", "created", "updated"}

        listed = await _ok(tools, "list_relationships", entityId="a", direction="outgoing")
        assert [r["id"] for r in listed["relationships"]] == [rel["id"]]

        traversal = await _ok(tools, "traverse_graph", startEntityId="a", maxDepth=1)
        assert [e["id"] for e in traversal["entities"]] == ["a", "b"]
        assert traversal["paths"]["b"] == {
            "distance": 1,
            "path": [{"relationshipId": rel["id"], "relationshipType": "knows", "direction": "outgoing"}],
        }

        related = await _ok(tools, "find_related", entityId="b")
        assert [e["id"] for e in related["entities"]] == ["a"]

        bad = await dispatch(tools, {
            "operation": "traverse_graph",
            "params": {"startEntityId": "a", "relationshipTypes": "knows"},
        })
        assert bad["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_search_options_flat_or_nested(self, tools):
        for i in range(3):
            await _ok(tools, "store_entity", entity={"id": f"n{i}", "type": "note", "content": "needle"})

        nested = await _ok(tools, "search_by_text", query="needle", options={"limit": 1, "offset": 1})
        flat = await _ok(tools, "search_by_text", query="needle", limit=1, offset=1)
        assert nested == flat
        assert nested["total"] == 3
        assert [h["entity"]["id"] for h in nested["results"]] == ["n1"]

    @pytest.mark.asyncio
    async def test_metadata_and_agent_operations(self, tools):
        memory = await _ok(
            tools, "store_agent_memory", agentId="a1",
            memory={"content": "prefers tea", "metadata": {"kind": "preference"}},
        )
        fetched = await _ok(tools, "get_agent_memory", agentId="a1", memoryId=memory["id"])
        assert fetched["content"] == "prefers tea"

        by_agent = await _ok(tools, "find_entities_by_agent_id", agentId="a1")
        assert by_agent["total"] == 1

        found = await _ok(
            tools, "search_by_metadata", metadata={"kind": "preference"}, options={"agentId": "a1"}
        )
        assert [h["entity"]["id"] for h in found["results"]] == [memory["id"]]

        wrong = await dispatch(
            tools, {"operation": "get_agent_memory", "params": {"agentId": "a2", "memoryId": memory["id"]}}
        )
        assert wrong["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_combined_search_hits_carry_scores(self, tools):
        await _ok(tools, "store_entity", entity={"type": "note", "content": "graph memory"})
        result = await _ok(tools, "search", query="graph")
        assert result["results"][0]["scores"]["text"] == 1.0

        vector = await _ok(tools, "search_by_vector", vector=[0.1, 0.2])
        assert vector["results"] == []
