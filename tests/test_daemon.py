"""Tests for the daemon's PID handling and lifecycle."""

from __future__ import annotations

import asyncio
import os

import pytest

from kgmem.config import KgmemConfig
from kgmem.daemon import KgmemDaemon


class TestDaemon:
    def test_stale_pid_file_removed(self, config: KgmemConfig):
        config.pid_file.write_text("not-a-pid")
        KgmemDaemon(config)._check_existing()
        assert not config.pid_file.exists()

    def test_live_pid_refuses_to_start(self, config: KgmemConfig):
        config.pid_file.write_text(str(os.getpid()))
        with pytest.raises(SystemExit):
            KgmemDaemon(config)._check_existing()

    @pytest.mark.asyncio
    async def test_run_and_shutdown(self, config: KgmemConfig):
        daemon = KgmemDaemon(config)
        task = asyncio.create_task(daemon.run())

        socket_path = config.server.socket_path
        for _ in range(200):
            if socket_path.exists():
                break
            await asyncio.sleep(0.01)
        assert socket_path.exists()
        assert config.pid_file.read_text() == str(os.getpid())

        daemon.shutdown()
        await asyncio.wait_for(task, timeout=5)
        assert not config.pid_file.exists()
        assert not socket_path.exists()
        assert (config.storage.root / "relations").is_dir()
