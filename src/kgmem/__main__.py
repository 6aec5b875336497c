"""Entry point: python -m kgmem [serve|mcp]

- "serve" (default): Daemon mode, memory server on a Unix socket
- "mcp":             MCP server over stdio, for agent runtimes
"""

from __future__ import annotations

import asyncio
import logging
import sys

from kgmem.config import load_config


def _setup_logging(level: str) -> None:
    # stderr only: stdout carries the MCP protocol
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_serve() -> None:
    """Daemon mode: memory server."""
    config = load_config()
    _setup_logging(config.log_level)

    from kgmem.daemon import KgmemDaemon

    daemon = KgmemDaemon(config)
    asyncio.run(daemon.run())


def _run_mcp() -> None:
    """MCP stdio mode."""
    config = load_config()
    _setup_logging(config.log_level)

    from kgmem.core import Memory
    from kgmem.mcp_server import serve_stdio

    try:
        asyncio.run(serve_stdio(Memory(config)))
    except KeyboardInterrupt:
        pass


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    if cmd == "serve":
        _run_serve()
    elif cmd == "mcp":
        _run_mcp()
    else:
        print("Usage: python -m kgmem [serve|mcp]")
        print("  serve  Memory server daemon (default)")
        print("  mcp    MCP server over stdio")
        sys.exit(1)


if __name__ == "__main__":
    main()
