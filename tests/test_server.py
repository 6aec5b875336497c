"""Tests for the HTTP memory server and its Unix-socket client."""

from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp import test_utils

from kgmem.client import MemoryClient
from kgmem.core import Memory
from kgmem.errors import NotFoundError, UnsupportedOperationError, ValidationError
from kgmem.server import MemoryServer


@pytest_asyncio.fixture
async def http(memory: Memory):
    server = MemoryServer(memory)
    async with test_utils.TestClient(test_utils.TestServer(server.build_app())) as client:
        yield client


class TestHttp:
    @pytest.mark.asyncio
    async def test_health(self, http: test_utils.TestClient, memory: Memory):
        await memory.store.store({"type": "note"})
        resp = await http.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok", "entities": 1, "relationships": 0}

    @pytest.mark.asyncio
    async def test_rpc_round_trip(self, http: test_utils.TestClient):
        resp = await http.post("/rpc", json={
            "operation": "store_entity",
            "params": {"entity": {"id": "n1", "type": "note", "content": "over http"}},
        })
        assert resp.status == 200
        body = await resp.json()
        assert body["operation"] == "store_entity"
        assert body["result"]["id"] == "n1"

        resp = await http.post("/rpc", json={"operation": "get_entity", "params": {"id": "n1"}})
        assert (await resp.json())["result"]["content"] == "over http"

    @pytest.mark.asyncio
    async def test_errors_are_tagged(self, http: test_utils.TestClient):
        resp = await http.post("/rpc", json={"operation": "get_entity", "params": {"id": "missing"}})
        assert resp.status == 200
        body = await resp.json()
        assert body["error"] is True
        assert body["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_json(self, http: test_utils.TestClient):
        resp = await http.post("/rpc", data=b"{nope", headers={"Content-Type": "application/json"})
        assert resp.status == 400
        assert (await resp.json())["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_body_not_utf8(self, http: test_utils.TestClient):
        resp = await http.post("/rpc", data=b"\xff\xfe{}", headers={"Content-Type": "application/json"})
        assert resp.status == 400
        body = await resp.json()
        assert body["error"] is True
        assert body["code"] == "VALIDATION_ERROR"


class TestUnixSocket:
    @pytest.mark.asyncio
    async def test_client_over_socket(self, memory: Memory):
        server = MemoryServer(memory)
        await server.start()
        socket_path = memory.config.server.socket_path
        try:
            assert socket_path.exists()
            async with MemoryClient(socket_path) as client:
                health = await client.health()
                assert health["status"] == "ok"

                stored = await client.store_entity({"id": "s1", "type": "note", "content": "sock"})
                assert stored["id"] == "s1"
                assert (await client.get_entity("s1"))["content"] == "sock"

                found = await client.search_by_text("sock")
                assert found["total"] == 1

                with pytest.raises(NotFoundError):
                    await client.get_entity("missing")
                with pytest.raises(ValidationError):
                    await client.store_entity({"content": "no type"})
                with pytest.raises(UnsupportedOperationError):
                    await client.call("explode")
        finally:
            await server.stop()
        assert not socket_path.exists()
