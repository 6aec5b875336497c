"""Async client for the memory server's Unix socket."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiohttp

from kgmem.errors import ERRORS_BY_CODE, KgmemError

logger = logging.getLogger(__name__)


class MemoryClient:
    """Sends ``{operation, params}`` requests and unwraps the result.

    Tagged error responses are raised as the matching ``KgmemError`` subclass.
    Use as an async context manager, or call ``close()`` when done.
    """

    def __init__(self, socket_path: Path | str, base_url: str = "http://localhost") -> None:
        self.socket_path = Path(socket_path)
        self._base_url = base_url
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> MemoryClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.UnixConnector(path=str(self.socket_path))
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def health(self) -> dict[str, Any]:
        async with self._get_session().get(f"{self._base_url}/health") as resp:
            resp.raise_for_status()
            return await resp.json()

    async def call(self, operation: str, **params: Any) -> Any:
        """Run one operation; keyword arguments are sent as wire params."""
        payload = {"operation": operation, "params": params}
        async with self._get_session().post(f"{self._base_url}/rpc", json=payload) as resp:
            body = await resp.json()

        if body.get("error"):
            code = body.get("code", KgmemError.code)
            error_cls = ERRORS_BY_CODE.get(code, KgmemError)
            logger.debug("%s returned %s: %s", operation, code, body.get("message"))
            raise error_cls(body.get("message", "Unknown error"))
        return body.get("result")

    # ── Convenience wrappers ──────────────────────────────────

    async def store_entity(self, entity: dict[str, Any], context: str | None = None) -> dict[str, Any]:
        return await self.call("store_entity", entity=entity, context=context)

    async def get_entity(self, entity_id: str, context: str | None = None) -> dict[str, Any]:
        return await self.call("get_entity", id=entity_id, context=context)

    async def update_entity(
        self, entity_id: str, updates: dict[str, Any], context: str | None = None
    ) -> dict[str, Any]:
        return await self.call("update_entity", id=entity_id, updates=updates, context=context)

    async def delete_entity(self, entity_id: str, context: str | None = None) -> bool:
        return await self.call("delete_entity", id=entity_id, context=context)

    async def create_relationship(self, relationship: dict[str, Any]) -> dict[str, Any]:
        return await self.call("create_relationship", relationship=relationship)

    async def traverse_graph(self, start_entity_id: str, **options: Any) -> dict[str, Any]:
        return await self.call("traverse_graph", startEntityId=start_entity_id, **options)

    async def search_by_text(self, query: str, **options: Any) -> dict[str, Any]:
        return await self.call("search_by_text", query=query, options=options)
