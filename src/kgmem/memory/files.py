"""Async JSON file helpers.

Blocking filesystem calls run in worker threads via ``asyncio.to_thread``.
A missing file is a normal outcome (``None`` / ``False`` / empty list);
any other ``OSError`` and undecodable JSON become ``StorageError``.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any

from kgmem.errors import StorageError


def _read(path: Path) -> dict[str, Any] | None:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupt JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise StorageError(f"Expected a JSON object in {path}")
    return data


def _write(path: Path, data: dict[str, Any]) -> None:
    # Write to a sibling temp file then rename, so readers never see half a file.
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise StorageError(f"Failed to write {path}: {e}") from e


def _remove(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageError(f"Failed to delete {path}: {e}") from e
    return True


def _json_files(directory: Path) -> list[Path]:
    try:
        return sorted(p for p in directory.iterdir() if p.suffix == ".json" and p.is_file())
    except FileNotFoundError:
        return []
    except OSError as e:
        raise StorageError(f"Failed to list {directory}: {e}") from e


def _subdirectories(directory: Path) -> list[Path]:
    try:
        return sorted(p for p in directory.iterdir() if p.is_dir())
    except FileNotFoundError:
        return []
    except OSError as e:
        raise StorageError(f"Failed to list {directory}: {e}") from e


async def read_json(path: Path) -> dict[str, Any] | None:
    return await asyncio.to_thread(_read, path)


async def write_json(path: Path, data: dict[str, Any]) -> None:
    await asyncio.to_thread(_write, path, data)


async def remove_file(path: Path) -> bool:
    """Delete ``path``. Returns False if it was already gone."""
    return await asyncio.to_thread(_remove, path)


async def json_files(directory: Path) -> list[Path]:
    """Sorted ``*.json`` files directly inside ``directory``."""
    return await asyncio.to_thread(_json_files, directory)


async def subdirectories(directory: Path) -> list[Path]:
    return await asyncio.to_thread(_subdirectories, directory)


async def make_dirs(*directories: Path) -> None:
    def _mkdirs() -> None:
        try:
            for d in directories:
                d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create directory: {e}") from e

    await asyncio.to_thread(_mkdirs)
