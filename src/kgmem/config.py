"""Configuration loading from environment variables and kgmem.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".kgmem"
_DEFAULT_ROOT = _DEFAULT_HOME / "memory"
_DEFAULT_SOCKET = _DEFAULT_HOME / "memory-server.sock"
_CONFIG_FILENAME = "kgmem.toml"


@dataclass
class StorageConfig:
    """Where entities and relationships live and how they are cached."""

    root: Path = _DEFAULT_ROOT
    cache_size: int = 1000
    lock_timeout: float | None = None  # None: wait for file locks indefinitely


@dataclass
class ServerConfig:
    """Memory server listeners."""

    socket_path: Path = _DEFAULT_SOCKET
    host: str = "127.0.0.1"
    port: int = 0  # 0 disables the TCP listener


@dataclass
class KgmemConfig:
    """Top-level kgmem configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    pid_file: Path = _DEFAULT_HOME / "kgmem.pid"
    log_level: str = "INFO"


def _optional_float(value) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def load_config(config_path: Path | None = None) -> KgmemConfig:
    """Load configuration from environment variables and optional kgmem.toml.

    Priority: environment variables > kgmem.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.kgmem/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_HOME / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    server_data = file_data.get("server", {})

    config = KgmemConfig(
        storage=StorageConfig(
            root=Path(os.getenv("KGMEM_ROOT", storage_data.get("root", str(_DEFAULT_ROOT)))).expanduser(),
            cache_size=int(os.getenv("KGMEM_CACHE_SIZE", storage_data.get("cache_size", 1000))),
            lock_timeout=_optional_float(
                os.getenv("KGMEM_LOCK_TIMEOUT", storage_data.get("lock_timeout"))
            ),
        ),
        server=ServerConfig(
            socket_path=Path(
                os.getenv("KGMEM_SOCKET", server_data.get("socket_path", str(_DEFAULT_SOCKET)))
            ).expanduser(),
            host=os.getenv("KGMEM_HOST", server_data.get("host", "127.0.0.1")),
            port=int(os.getenv("KGMEM_PORT", server_data.get("port", 0))),
        ),
        pid_file=Path(file_data.get("pid_file", str(_DEFAULT_HOME / "kgmem.pid"))).expanduser(),
        log_level=os.getenv("KGMEM_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
