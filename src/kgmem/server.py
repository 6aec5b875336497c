"""Memory server: the memory tools over HTTP.

Routes:
    POST /rpc     {operation, params} → {operation, result} | {error, code, message}
    GET  /health  {status, entities, relationships}

Listens on a Unix socket, and additionally on TCP when a port is configured.
"""

from __future__ import annotations

import logging
from pathlib import Path

from aiohttp import web

from kgmem.config import ServerConfig
from kgmem.core import Memory
from kgmem.errors import ValidationError
from kgmem.tools.memory_tools import dispatch, error_response, get_memory_tools

logger = logging.getLogger(__name__)


class MemoryServer:
    """aiohttp application serving one ``Memory``."""

    def __init__(self, memory: Memory, config: ServerConfig | None = None) -> None:
        self.memory = memory
        self._config = config or memory.config.server
        self._tools = get_memory_tools(memory)
        self._runner: web.AppRunner | None = None
        self._sites: list[web.BaseSite] = []

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/rpc", self._handle_rpc)
        app.router.add_get("/health", self._handle_health)
        return app

    # ── Handlers ──────────────────────────────────────────────

    async def _handle_rpc(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError as e:  # bad JSON or a body that is not UTF-8
            return web.json_response(
                error_response(ValidationError.code, f"Invalid JSON: {e}"), status=400
            )
        response = await dispatch(self._tools, body)
        return web.json_response(response)

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok" if self.memory.initialized else "starting",
            "entities": len(self.memory.store.index),
            "relationships": len(self.memory.graph.index),
        })

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        await self.memory.initialize()

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        socket_path = Path(self._config.socket_path)
        socket_path.parent.mkdir(parents=True, exist_ok=True)
        if socket_path.exists():
            socket_path.unlink()  # left over from an unclean exit
        unix_site = web.UnixSite(self._runner, str(socket_path))
        await unix_site.start()
        self._sites.append(unix_site)
        logger.info("Memory server listening on %s", socket_path)

        if self._config.port:
            tcp_site = web.TCPSite(self._runner, self._config.host, self._config.port)
            await tcp_site.start()
            self._sites.append(tcp_site)
            logger.info("Memory server listening on %s:%d", self._config.host, self._config.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._sites.clear()
            logger.info("Memory server stopped")
        socket_path = Path(self._config.socket_path)
        if socket_path.exists():
            socket_path.unlink()
