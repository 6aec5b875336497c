"""Shared fixtures: a fresh memory root per test."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from kgmem.config import KgmemConfig, ServerConfig, StorageConfig
from kgmem.core import Memory


@pytest.fixture
def config(tmp_path: Path) -> KgmemConfig:
    return KgmemConfig(
        storage=StorageConfig(root=tmp_path / "memory"),
        server=ServerConfig(socket_path=tmp_path / "kgmem.sock"),
        pid_file=tmp_path / "kgmem.pid",
    )


@pytest_asyncio.fixture
async def memory(config: KgmemConfig) -> Memory:
    m = Memory(config)
    await m.initialize()
    return m
