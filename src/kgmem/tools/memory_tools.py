"""Memory operations as named tools, plus the request envelope around them.

Every tool takes one parameter object (camelCase keys, as on the wire) and
returns a JSON-ready value. ``dispatch()`` wraps a tool call in the
``{operation, params}`` → ``{operation, result}`` envelope and turns errors
into ``{error: true, code, message}``. The memory server, the MCP server and
tests all go through ``dispatch()``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from kgmem.errors import KgmemError, UnsupportedOperationError, ValidationError

if TYPE_CHECKING:
    from kgmem.core import Memory

logger = logging.getLogger(__name__)

Tool = Callable[[dict[str, Any]], Awaitable[Any]]

# Wire option name → keyword argument, per search operation
_TEXT_OPTIONS = {
    "limit": "limit",
    "offset": "offset",
    "threshold": "threshold",
    "context": "context",
    "type": "type",
    "agentId": "agent_id",
}
_METADATA_OPTIONS = {
    **{k: v for k, v in _TEXT_OPTIONS.items() if k != "threshold"},
    "matchAll": "match_all",
}
_VECTOR_OPTIONS = {k: v for k, v in _TEXT_OPTIONS.items() if k != "offset"}
_SEARCH_OPTIONS = {
    **{k: v for k, v in _TEXT_OPTIONS.items() if k != "threshold"},
    "searchVector": "search_vector",
    "searchMetadata": "search_metadata",
    "weights": "weights",
    "vectorThreshold": "vector_threshold",
}
_SEMANTIC_OPTIONS = {
    **_VECTOR_OPTIONS,
    "includeRelated": "include_related",
    "maxRelatedDepth": "max_related_depth",
}


def _require(params: dict[str, Any], key: str, label: str) -> Any:
    value = params.get(key)
    if value is None or value == "":
        raise ValidationError(f"{label} is required")
    return value


def _options(params: dict[str, Any], names: dict[str, str]) -> dict[str, Any]:
    """Collect search options given flat or under ``options``; ``options`` wins."""
    nested = params.get("options") or {}
    if not isinstance(nested, dict):
        raise ValidationError("options must be an object")
    merged = {**params, **nested}
    return {kwarg: merged[wire] for wire, kwarg in names.items() if merged.get(wire) is not None}


def to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def get_memory_tools(memory: Memory) -> dict[str, Tool]:
    """Return a dict of operation name -> async tool over ``memory``."""
    store, graph, query = memory.store, memory.graph, memory.query

    # ── Entities ──────────────────────────────────────────────

    async def store_entity(params: dict[str, Any]) -> Any:
        entity = _require(params, "entity", "Entity")
        return await store.store(entity, params.get("context") or "shared")

    async def get_entity(params: dict[str, Any]) -> Any:
        return await store.get(_require(params, "id", "Entity ID"), params.get("context"))

    async def update_entity(params: dict[str, Any]) -> Any:
        entity_id = _require(params, "id", "Entity ID")
        updates = _require(params, "updates", "Updates")
        return await store.update(entity_id, updates, params.get("context"))

    async def delete_entity(params: dict[str, Any]) -> Any:
        return await store.delete(_require(params, "id", "Entity ID"), params.get("context"))

    async def list_entities(params: dict[str, Any]) -> Any:
        return await store.list_entities(
            params.get("type"), params.get("context"), params.get("limit"), params.get("offset")
        )

    # ── Relationships ─────────────────────────────────────────

    async def create_relationship(params: dict[str, Any]) -> Any:
        return await graph.create(_require(params, "relationship", "Relationship"))

    async def get_relationship(params: dict[str, Any]) -> Any:
        return await graph.get(_require(params, "id", "Relationship ID"))

    async def update_relationship(params: dict[str, Any]) -> Any:
        rel_id = _require(params, "id", "Relationship ID")
        return await graph.update(rel_id, _require(params, "updates", "Updates"))

    async def delete_relationship(params: dict[str, Any]) -> Any:
        return await graph.delete(_require(params, "id", "Relationship ID"))

    async def list_relationships(params: dict[str, Any]) -> Any:
        return await graph.list_relationships(
            _require(params, "entityId", "Entity ID"),
            params.get("type"),
            params.get("direction"),
            params.get("limit"),
            params.get("offset"),
        )

    async def traverse_graph(params: dict[str, Any]) -> Any:
        return await graph.traverse(
            _require(params, "startEntityId", "Start entity ID"),
            params.get("relationshipTypes"),
            params.get("maxDepth"),
            params.get("direction"),
        )

    async def find_related(params: dict[str, Any]) -> Any:
        return await graph.find_related(
            _require(params, "entityId", "Entity ID"),
            params.get("relationshipTypes"),
            params.get("maxDepth"),
            params.get("direction"),
            params.get("limit"),
        )

    async def find_common_connections(params: dict[str, Any]) -> Any:
        return await graph.find_common_connections(
            _require(params, "entityIds", "Entity IDs"),
            params.get("relationshipTypes"),
            params.get("maxDepth"),
            params.get("direction"),
            params.get("limit"),
        )

    # ── Queries ───────────────────────────────────────────────

    async def search_by_text(params: dict[str, Any]) -> Any:
        text = _require(params, "query", "Query")
        return await query.search_by_text(text, **_options(params, _TEXT_OPTIONS))

    async def search_by_metadata(params: dict[str, Any]) -> Any:
        metadata = _require(params, "metadata", "Metadata")
        return await query.search_by_metadata(metadata, **_options(params, _METADATA_OPTIONS))

    async def search_by_vector(params: dict[str, Any]) -> Any:
        vector = _require(params, "vector", "Vector")
        return await query.search_by_vector(vector, **_options(params, _VECTOR_OPTIONS))

    async def search(params: dict[str, Any]) -> Any:
        text = _require(params, "query", "Query")
        return await query.search(text, **_options(params, _SEARCH_OPTIONS))

    async def semantic_search(params: dict[str, Any]) -> Any:
        text = _require(params, "query", "Query")
        return await query.semantic_search(text, **_options(params, _SEMANTIC_OPTIONS))

    # ── Agents ────────────────────────────────────────────────

    async def find_entities_by_agent_id(params: dict[str, Any]) -> Any:
        return await store.find_by_agent_id(
            _require(params, "agentId", "Agent ID"),
            params.get("type"),
            params.get("limit"),
            params.get("offset"),
        )

    async def get_agent_memory(params: dict[str, Any]) -> Any:
        agent_id = _require(params, "agentId", "Agent ID")
        return await store.get_agent_memory(agent_id, _require(params, "memoryId", "Memory ID"))

    async def store_agent_memory(params: dict[str, Any]) -> Any:
        agent_id = _require(params, "agentId", "Agent ID")
        return await store.store_agent_memory(agent_id, _require(params, "memory", "Memory"))

    return {
        "store_entity": store_entity,
        "get_entity": get_entity,
        "update_entity": update_entity,
        "delete_entity": delete_entity,
        "list_entities": list_entities,
        "create_relationship": create_relationship,
        "get_relationship": get_relationship,
        "update_relationship": update_relationship,
        "delete_relationship": delete_relationship,
        "list_relationships": list_relationships,
        "traverse_graph": traverse_graph,
        "find_related": find_related,
        "find_common_connections": find_common_connections,
        "search_by_text": search_by_text,
        "search_by_metadata": search_by_metadata,
        "search_by_vector": search_by_vector,
        "search": search,
        "semantic_search": semantic_search,
        "find_entities_by_agent_id": find_entities_by_agent_id,
        "get_agent_memory": get_agent_memory,
        "store_agent_memory": store_agent_memory,
    }


def error_response(code: str, message: str) -> dict[str, Any]:
    return {"error": True, "code": code, "message": message}


async def dispatch(tools: dict[str, Tool], request: Any) -> dict[str, Any]:
    """Run one ``{operation, params}`` request and build the response envelope."""
    if not isinstance(request, dict):
        return error_response(ValidationError.code, "Request must be an object")
    operation = request.get("operation")
    tool = tools.get(operation) if isinstance(operation, str) else None
    if tool is None:
        return error_response(UnsupportedOperationError.code, f"Unsupported operation: {operation}")

    params = request.get("params") or {}
    if not isinstance(params, dict):
        return error_response(ValidationError.code, "params must be an object")

    try:
        result = await tool(params)
    except KgmemError as e:
        logger.info("%s failed: [%s] %s", operation, e.code, e)
        return error_response(e.code, str(e))
    except Exception as e:
        logger.exception("Unexpected error in %s", operation)
        return error_response(KgmemError.code, str(e) or type(e).__name__)

    return {"operation": operation, "result": to_jsonable(result)}
