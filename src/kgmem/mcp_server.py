"""MCP server for kgmem: the memory tools over stdio.

Protocol: JSON-RPC 2.0 over stdio (NDJSON). Each memory operation is one MCP
tool whose arguments are the operation's parameter object. Tool results are
the JSON-encoded operation result; failures come back with ``isError`` set.

Usage:
  python -m kgmem mcp
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from kgmem import __version__
from kgmem.core import Memory
from kgmem.tools.memory_tools import Tool, dispatch, get_memory_tools

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────

SERVER_NAME = "kgmem"
PROTOCOL_VERSION = "2024-11-05"

# ── Tool definitions ─────────────────────────────────────────

_ID = {"type": "string"}
_OBJECT = {"type": "object"}
_CONTEXT = {"type": "string", "enum": ["agent", "project", "template", "shared"]}
_DIRECTION = {"type": "string", "enum": ["both", "outgoing", "incoming"]}
_PAGE = {"limit": {"type": "integer"}, "offset": {"type": "integer"}}
_TYPES = {"type": "array", "items": {"type": "string"}}
_SEARCH = {
    "options": _OBJECT,
    "context": _CONTEXT,
    "type": {"type": "string"},
    "agentId": {"type": "string"},
    **_PAGE,
}


def _tool(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict:
    return {
        "name": name,
        "description": description,
        "inputSchema": {"type": "object", "properties": properties, "required": required},
    }


TOOLS = [
    _tool("store_entity", "Store an entity (must have a type) in a context; returns it with id and timestamps.",
          {"entity": _OBJECT, "context": _CONTEXT}, ["entity"]),
    _tool("get_entity", "Fetch an entity by ID.", {"id": _ID, "context": _CONTEXT}, ["id"]),
    _tool("update_entity", "Merge updates into an entity; id, type and created are kept.",
          {"id": _ID, "updates": _OBJECT, "context": _CONTEXT}, ["id", "updates"]),
    _tool("delete_entity", "Delete an entity; false if it did not exist.",
          {"id": _ID, "context": _CONTEXT}, ["id"]),
    _tool("list_entities", "List entities, optionally by type and context.",
          {"type": {"type": "string"}, "context": _CONTEXT, **_PAGE}, []),
    _tool("create_relationship", "Create a typed relationship {sourceId, targetId, type, properties?}.",
          {"relationship": _OBJECT}, ["relationship"]),
    _tool("get_relationship", "Fetch a relationship by ID.", {"id": _ID}, ["id"]),
    _tool("update_relationship", "Change a relationship's type or properties.",
          {"id": _ID, "updates": _OBJECT}, ["id", "updates"]),
    _tool("delete_relationship", "Delete a relationship; false if it did not exist.", {"id": _ID}, ["id"]),
    _tool("list_relationships", "Relationships touching an entity.",
          {"entityId": _ID, "type": {"type": "string"}, "direction": _DIRECTION, **_PAGE}, ["entityId"]),
    _tool("traverse_graph", "Breadth-first traversal with shortest paths to every reached entity.",
          {"startEntityId": _ID, "relationshipTypes": _TYPES, "maxDepth": {"type": "integer"},
           "direction": _DIRECTION}, ["startEntityId"]),
    _tool("find_related", "Entities connected to one entity, nearest first.",
          {"entityId": _ID, "relationshipTypes": _TYPES, "maxDepth": {"type": "integer"},
           "direction": _DIRECTION, "limit": {"type": "integer"}}, ["entityId"]),
    _tool("find_common_connections", "Entities reachable from all of the given entities.",
          {"entityIds": _TYPES, "relationshipTypes": _TYPES, "maxDepth": {"type": "integer"},
           "direction": _DIRECTION, "limit": {"type": "integer"}}, ["entityIds"]),
    _tool("search_by_text", "Keyword search over content, name and description.",
          {"query": {"type": "string"}, "threshold": {"type": "number"}, **_SEARCH}, ["query"]),
    _tool("search_by_metadata", "Match metadata key/value pairs (all by default, any with matchAll=false).",
          {"metadata": _OBJECT, "matchAll": {"type": "boolean"}, **_SEARCH}, ["metadata"]),
    _tool("search_by_vector", "Vector similarity search (not supported; returns no results).",
          {"vector": {"type": "array", "items": {"type": "number"}}, **_SEARCH}, ["vector"]),
    _tool("search", "Weighted text + metadata search.",
          {"query": {}, "weights": _OBJECT, **_SEARCH}, ["query"]),
    _tool("semantic_search", "Search, optionally adding entities related to the best hit.",
          {"query": {}, "includeRelated": {"type": "boolean"}, "maxRelatedDepth": {"type": "integer"},
           **_SEARCH}, ["query"]),
    _tool("find_entities_by_agent_id", "Entities owned by an agent.",
          {"agentId": _ID, "type": {"type": "string"}, **_PAGE}, ["agentId"]),
    _tool("get_agent_memory", "Fetch one of an agent's memories.",
          {"agentId": _ID, "memoryId": _ID}, ["agentId", "memoryId"]),
    _tool("store_agent_memory", "Store a memory {content, tags?, metadata?} for an agent.",
          {"agentId": _ID, "memory": _OBJECT}, ["agentId", "memory"]),
]

# ── JSON-RPC 2.0 helpers ─────────────────────────────────────


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


# ── Request handler ──────────────────────────────────────────


async def handle_request(tools: dict[str, Tool], req: dict) -> dict | None:
    req_id = req.get("id")
    method = req.get("method", "")

    # Notifications (no id): no response
    if req_id is None:
        if method == "notifications/initialized":
            logger.info("Client initialized")
        return None

    if method == "initialize":
        return jsonrpc_result(req_id, {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        })

    if method == "tools/list":
        return jsonrpc_result(req_id, {"tools": TOOLS})

    if method == "tools/call":
        params = req.get("params") or {}
        response = await dispatch(tools, {
            "operation": params.get("name", ""),
            "params": params.get("arguments") or {},
        })
        if response.get("error"):
            text = f"[{response['code']}] {response['message']}"
            return jsonrpc_result(req_id, {
                "content": [{"type": "text", "text": text}],
                "isError": True,
            })
        return jsonrpc_result(req_id, {
            "content": [{"type": "text", "text": json.dumps(response["result"], ensure_ascii=False)}],
        })

    return jsonrpc_error(req_id, -32601, f"Method not found: {method}")


# ── Stdio transport (NDJSON) ─────────────────────────────────


async def serve_stdio(memory: Memory) -> None:
    await memory.initialize()
    tools = get_memory_tools(memory)
    logger.info("Starting (root=%s)", memory.config.storage.root)

    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

    while True:
        line = await reader.readline()
        if not line:
            break
        line = line.decode("utf-8").strip()
        if not line:
            continue

        try:
            req = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Parse error: %s", e)
            response = jsonrpc_error(None, -32700, f"Parse error: {e}")
        else:
            if not isinstance(req, dict):
                response = jsonrpc_error(None, -32600, "Invalid request")
            else:
                logger.debug("<- %s", req.get("method", "?"))
                response = await handle_request(tools, req)

        if response:
            sys.stdout.write(json.dumps(response) + "\n")
            sys.stdout.flush()

    logger.info("stdin closed, exiting")
