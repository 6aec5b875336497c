"""Tests for text, metadata and combined search."""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio

from kgmem.core import Memory
from kgmem.errors import ValidationError
from kgmem.memory.query import QueryEngine


@pytest.fixture
def query(memory: Memory) -> QueryEngine:
    return memory.query


class TestTextSearch:
    @pytest.mark.asyncio
    async def test_scores_by_token_fraction(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "both", "type": "note", "content": "apple banana"})
        await memory.store.store({"id": "one", "type": "note", "content": "apple"})
        await memory.store.store({"id": "none", "type": "note", "content": "cherry"})

        results = await query.search_by_text("apple banana")
        assert [(h.entity.id, h.score) for h in results.results] == [("both", 1.0), ("one", 0.5)]
        assert results.total == 2

    @pytest.mark.asyncio
    async def test_threshold(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "both", "type": "note", "content": "apple banana"})
        await memory.store.store({"id": "one", "type": "note", "content": "apple"})

        results = await query.search_by_text("apple banana", threshold=0.75)
        assert [h.entity.id for h in results.results] == ["both"]

    @pytest.mark.asyncio
    async def test_tokenization(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "greet", "type": "note", "name": "Hello, World!"})

        results = await query.search_by_text("hello-world")
        assert [(h.entity.id, h.score) for h in results.results] == [("greet", 1.0)]

        empty = await query.search_by_text("a ! ?")
        assert empty.results == []
        assert empty.total == 0

    @pytest.mark.asyncio
    async def test_indexed_fields(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "d", "type": "note", "description": "quarterly report"})
        await memory.store.store({"id": "x", "type": "note", "body": "quarterly report"})

        results = await query.search_by_text("quarterly")
        assert [h.entity.id for h in results.results] == ["d"]

    @pytest.mark.asyncio
    async def test_type_and_agent_filters(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "n1", "type": "note", "content": "shared topic"})
        await memory.store.store(
            {"id": "m1", "type": "memory", "content": "shared topic", "agentId": "a1"}, "agent"
        )
        await memory.store.store(
            {"id": "m2", "type": "memory", "content": "shared topic", "agentId": "a2"}, "agent"
        )

        by_type = await query.search_by_text("topic", type="memory")
        assert sorted(h.entity.id for h in by_type.results) == ["m1", "m2"]
        by_agent = await query.search_by_text("topic", agent_id="a1")
        assert [h.entity.id for h in by_agent.results] == ["m1"]
        assert by_agent.total == 1

    @pytest.mark.asyncio
    async def test_pagination(self, memory: Memory, query: QueryEngine):
        for i in range(5):
            await memory.store.store({"id": f"n{i}", "type": "note", "content": "common"})

        page = await query.search_by_text("common", limit=2, offset=2)
        assert page.total == 5
        assert [h.entity.id for h in page.results] == ["n2", "n3"]

    @pytest.mark.asyncio
    async def test_follows_updates_and_deletes(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "e", "type": "note", "content": "before"})
        await memory.store.update("e", {"content": "after"})
        assert (await query.search_by_text("before")).total == 0
        assert (await query.search_by_text("after")).total == 1

        await memory.store.delete("e")
        assert (await query.search_by_text("after")).total == 0


class TestMetadataSearch:
    @pytest_asyncio.fixture(autouse=True)
    async def _seed(self, memory: Memory):
        await memory.store.store({"id": "e1", "type": "item", "metadata": {"color": "red", "size": "L"}})
        await memory.store.store({"id": "e2", "type": "item", "metadata": {"color": "red", "size": "M"}})
        await memory.store.store({"id": "e3", "type": "item", "metadata": {"color": "blue", "done": True}})

    @pytest.mark.asyncio
    async def test_match_all_intersects(self, query: QueryEngine):
        results = await query.search_by_metadata({"color": "red", "size": "L"})
        assert [h.entity.id for h in results.results] == ["e1"]
        assert results.results[0].score == 1.0

    @pytest.mark.asyncio
    async def test_match_any_unions(self, query: QueryEngine):
        results = await query.search_by_metadata({"color": "red", "size": "L"}, match_all=False)
        assert [h.entity.id for h in results.results] == ["e1", "e2"]
        assert results.total == 2

    @pytest.mark.asyncio
    async def test_unknown_pairs_ignored(self, query: QueryEngine):
        results = await query.search_by_metadata({"color": "red", "shape": "round"})
        assert [h.entity.id for h in results.results] == ["e1", "e2"]

        nothing = await query.search_by_metadata({"shape": "round"})
        assert nothing.total == 0

    @pytest.mark.asyncio
    async def test_boolean_values(self, query: QueryEngine):
        results = await query.search_by_metadata({"done": True})
        assert [h.entity.id for h in results.results] == ["e3"]

    @pytest.mark.asyncio
    async def test_tags_are_indexed(self, memory: Memory, query: QueryEngine):
        memory_entity = await memory.store.store_agent_memory("a1", {"content": "x", "tags": ["tea", "pref"]})
        results = await query.search_by_metadata({"tags": "tea"})
        assert [h.entity.id for h in results.results] == [memory_entity.id]

    @pytest.mark.asyncio
    async def test_requires_object(self, query: QueryEngine):
        with pytest.raises(ValidationError):
            await query.search_by_metadata("color=red")


class TestCombinedSearch:
    @pytest.mark.asyncio
    async def test_text_weighting(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "e1", "type": "note", "content": "graph memory"})

        results = await query.search("graph memory")
        hit = results.results[0]
        assert hit.score == pytest.approx(0.6)
        assert hit.scores == {"text": 1.0, "vector": 0.0, "metadata": 0.0}

    @pytest.mark.asyncio
    async def test_structured_query_uses_metadata(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "e1", "type": "note", "metadata": {"lang": "py"}})

        results = await query.search({"lang": "py"})
        assert [h.entity.id for h in results.results] == ["e1"]
        assert results.results[0].score == pytest.approx(0.1)

        ignored = await query.search({"lang": "py"}, search_metadata=False)
        assert ignored.results == []

    @pytest.mark.asyncio
    async def test_custom_weights(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "e1", "type": "note", "content": "graph"})

        results = await query.search("graph", weights={"text": 1.0})
        assert results.results[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_semantic_search_adds_related(self, memory: Memory, query: QueryEngine):
        await memory.store.store({"id": "pie", "type": "recipe", "content": "apple pie"})
        await memory.store.store({"id": "oven", "type": "tool", "content": "hot box"})
        await memory.graph.create({"sourceId": "pie", "targetId": "oven", "type": "needs"})

        plain = await query.semantic_search("apple")
        assert [h.entity.id for h in plain.results] == ["pie"]

        expanded = await query.semantic_search("apple", include_related=True)
        assert [(h.entity.id, h.related) for h in expanded.results] == [("pie", False), ("oven", True)]
        assert expanded.results[1].score == 0.5

    @pytest.mark.asyncio
    async def test_vector_search_is_empty(self, query: QueryEngine, caplog):
        with caplog.at_level(logging.WARNING, logger="kgmem.memory.query"):
            results = await query.search_by_vector([0.1, 0.2])
        assert results.results == []
        assert results.total == 0
        assert "not implemented" in caplog.text
