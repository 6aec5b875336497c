"""Entity store: one JSON file per entity, partitioned by context.

JSON files are the source of truth. Text, metadata and agent-ownership
indices are built once at startup by scanning every file, then updated
inside the same per-file lock as each write, so a crash between file and
index mutation heals on the next start.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from kgmem.errors import NotFoundError, StorageError, ValidationError
from kgmem.memory.cache import BoundedCache
from kgmem.memory.files import json_files, make_dirs, read_json, remove_file, subdirectories, write_json
from kgmem.memory.indices import EntityIndex
from kgmem.memory.locks import PathLocks
from kgmem.memory.models import (
    CONTEXT_KEYS,
    CONTEXTS,
    Entity,
    EntityPage,
    check_name,
    generate_id,
    now_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100

_CONTEXT_DIRS = {
    "agent": "agents",
    "project": "projects",
    "template": "templates",
    "shared": "shared",
}


def page_args(limit: Any, offset: Any, default_limit: int = DEFAULT_LIMIT) -> tuple[int, int]:
    """Normalize pagination arguments; None means the default."""
    limit = default_limit if limit is None else limit
    offset = 0 if offset is None else offset
    try:
        limit, offset = int(limit), int(offset)
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers") from None
    if limit < 0 or offset < 0:
        raise ValidationError("limit and offset must not be negative")
    return limit, offset


class EntityStore:
    """Durable CRUD for entities with search indices and a bounded cache."""

    def __init__(
        self,
        root: Path,
        cache_size: int = 1000,
        locks: PathLocks | None = None,
    ) -> None:
        self.root = root
        self.dirs: dict[str, Path] = {ctx: root / name for ctx, name in _CONTEXT_DIRS.items()}
        self.index = EntityIndex()
        self.cache: BoundedCache[Entity] = BoundedCache(cache_size)
        self.locks = locks or PathLocks()
        self._paths: dict[str, Path] = {}  # entity ID → file, from the startup scan

    # ── Initialization ────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the directory layout and rebuild indices from disk."""
        await make_dirs(*self.dirs.values())
        await self.rebuild()

    async def rebuild(self) -> None:
        """Drop all in-memory state and rescan every entity file."""
        self.index.clear()
        self.cache.clear()
        self._paths.clear()
        for path in await self._entity_files(None):
            entity = await self._load(path)
            if entity is None:
                continue
            if entity.id in self._paths:
                logger.warning(
                    "Duplicate entity %s at %s (keeping %s)", entity.id, path, self._paths[entity.id]
                )
                continue
            self._paths[entity.id] = path
            self.index.add(entity)
        logger.info(
            "Entity index rebuilt: %d entities, %d terms", len(self.index), len(self.index.text)
        )

    async def _load(self, path: Path) -> Entity | None:
        """Read an entity file during a scan. Unreadable files are logged and skipped."""
        try:
            data = await read_json(path)
            if data is None:
                return None
            data.setdefault("id", path.stem)
            return Entity.from_dict(data)
        except (StorageError, ValidationError) as e:
            logger.error("Skipping entity file %s: %s", path, e)
            return None

    # ── Paths ─────────────────────────────────────────────────

    def _directory(self, entity: Entity, context: str | None) -> Path:
        """Storage directory for ``entity`` under ``context`` (default: shared)."""
        context = context or "shared"
        if context not in CONTEXTS:
            raise ValidationError(f"Unknown context: {context!r}")
        if context == "shared":
            return self.dirs["shared"]
        key = CONTEXT_KEYS[context]
        selector = entity.get(key)
        if not selector:
            raise ValidationError(f"The {context} context requires {key}")
        return self.dirs[context] / check_name(selector, key)

    def _context_of(self, path: Path) -> str:
        if path.parent == self.dirs["shared"]:
            return "shared"
        for context, directory in self.dirs.items():
            if path.parent.parent == directory:
                return context
        raise StorageError(f"Path outside the store layout: {path}")

    async def _context_dirs(self, context: str | None) -> list[Path]:
        contexts = [context] if context else ["shared", "agent", "project", "template"]
        directories: list[Path] = []
        for ctx in contexts:
            if ctx == "shared":
                directories.append(self.dirs["shared"])
            else:
                directories.extend(await subdirectories(self.dirs[ctx]))
        return directories

    async def _entity_files(self, context: str | None) -> list[Path]:
        files: list[Path] = []
        for directory in await self._context_dirs(context):
            files.extend(await json_files(directory))
        return files

    async def _find(self, entity_id: str, context: str | None) -> tuple[Entity, Path] | None:
        """Locate an entity on disk, probing agent → project → template → shared."""
        if context is not None and context not in CONTEXTS:
            raise ValidationError(f"Unknown context: {context!r}")
        filename = f"{check_name(entity_id, 'entity ID')}.json"

        candidates: list[Path] = []
        hint = self._paths.get(entity_id)
        if hint is not None and (context is None or self._context_of(hint) == context):
            candidates.append(hint)
        for ctx in [context] if context else CONTEXTS:
            if ctx == "shared":
                candidates.append(self.dirs["shared"] / filename)
            else:
                candidates.extend(d / filename for d in await subdirectories(self.dirs[ctx]))

        seen: set[Path] = set()
        for path in candidates:
            if path in seen:
                continue
            seen.add(path)
            data = await read_json(path)
            if data is not None:
                data.setdefault("id", entity_id)
                return Entity.from_dict(data), path
        return None

    # ── CRUD ──────────────────────────────────────────────────

    async def store(self, entity: Entity | dict[str, Any], context: str | None = "shared") -> Entity:
        """Persist an entity, assigning an ID and timestamps. Returns the stored entity."""
        if not isinstance(entity, Entity):
            entity = Entity.from_dict(entity)
        if not entity.type:
            raise ValidationError("Entity must have a type")
        entity_id = check_name(entity.id or generate_id("entity"), "entity ID")
        directory = self._directory(entity, context)
        path = directory / f"{entity_id}.json"
        await make_dirs(directory)

        async with self.locks.hold(path):
            existing = self._paths.get(entity_id)
            if existing is not None and existing != path:
                raise ValidationError(
                    f"Entity {entity_id} is already stored in the {self._context_of(existing)} "
                    "context; update or delete it instead"
                )
            # Claimed before the first await so a concurrent store elsewhere sees it
            self._paths[entity_id] = path
            try:
                previous = await read_json(path)
                now = now_iso()
                stored = Entity(
                    id=entity_id,
                    type=entity.type,
                    created=(previous or {}).get("created") or now,
                    updated=now,
                    attributes=dict(entity.attributes),
                )
                await write_json(path, stored.to_dict())
            except BaseException:
                if existing is None:
                    self._paths.pop(entity_id, None)
                raise
            self.index.replace(stored)
            self.cache.put(entity_id, stored)

        logger.debug("Stored entity %s (%s) at %s", entity_id, stored.type, path)
        return stored

    async def get(self, entity_id: str, context: str | None = None) -> Entity:
        """Return an entity, from cache if present. Raises NotFoundError."""
        cached = self.cache.get(entity_id)
        if cached is not None:
            return cached
        found = await self._find(entity_id, context)
        if found is None:
            raise NotFoundError(f"Entity not found: {entity_id}")
        entity, _ = found
        self.cache.put(entity.id, entity)
        return entity

    async def update(
        self,
        entity_id: str,
        updates: dict[str, Any],
        context: str | None = None,
    ) -> Entity:
        """Merge ``updates`` into an entity; ``id``, ``type`` and ``created`` are kept."""
        if not isinstance(updates, dict):
            raise ValidationError("Updates must be an object")
        found = await self._find(entity_id, context)
        if found is None:
            raise NotFoundError(f"Entity not found: {entity_id}")
        current, path = found
        context = context or self._context_of(path)
        changes = {k: v for k, v in updates.items() if k not in Entity._FIXED}
        target = self._directory(
            Entity(id=entity_id, type=current.type, attributes={**current.attributes, **changes}),
            context,
        ) / path.name

        async with self.locks.hold(path, target):
            data = await read_json(path)
            if data is None:
                raise NotFoundError(f"Entity not found: {entity_id}")
            data.setdefault("id", entity_id)
            current = Entity.from_dict(data)
            updated = Entity(
                id=entity_id,
                type=current.type,
                created=current.created,
                updated=now_iso(),
                attributes={**current.attributes, **changes},
            )
            await write_json(target, updated.to_dict())
            if target != path:
                await remove_file(path)
                logger.info("Moved entity %s to %s", entity_id, target.parent)
            self._paths[entity_id] = target
            self.index.replace(updated)
            self.cache.put(entity_id, updated)

        logger.debug("Updated entity %s", entity_id)
        return updated

    async def delete(self, entity_id: str, context: str | None = None) -> bool:
        """Delete an entity. Returns False if it was already absent."""
        found = await self._find(entity_id, context)
        if found is None:
            return False
        _, path = found

        async with self.locks.hold(path):
            removed = await remove_file(path)
            self.index.remove(entity_id)
            self.cache.discard(entity_id)
            if self._paths.get(entity_id) == path:
                del self._paths[entity_id]

        if removed:
            logger.debug("Deleted entity %s", entity_id)
        return removed

    async def list_entities(
        self,
        type: str | None = None,
        context: str | None = None,
        limit: int | None = DEFAULT_LIMIT,
        offset: int | None = 0,
    ) -> EntityPage:
        """Read every entity of a context (or all contexts), filter by type, paginate."""
        limit, offset = page_args(limit, offset)
        if context is not None and context not in CONTEXTS:
            raise ValidationError(f"Unknown context: {context!r}")
        matches: list[Entity] = []
        for path in await self._entity_files(context):
            entity = await self._load(path)
            if entity is not None and (type is None or entity.type == type):
                matches.append(entity)
        return EntityPage(matches[offset : offset + limit], len(matches), limit, offset)

    async def find_by_agent_id(
        self,
        agent_id: str,
        type: str | None = None,
        limit: int | None = DEFAULT_LIMIT,
        offset: int | None = 0,
    ) -> EntityPage:
        """Entities owned by an agent, via the agent index or a directory scan."""
        limit, offset = page_args(limit, offset)
        matches: list[Entity] = []
        indexed = self.index.agent_ids(agent_id)
        if indexed is not None:
            for entity_id in indexed:
                try:
                    entity = await self.get(entity_id)
                except NotFoundError:
                    logger.debug("Agent index points at missing entity %s", entity_id)
                    continue
                if type is None or entity.type == type:
                    matches.append(entity)
        else:
            directory = self.dirs["agent"] / check_name(agent_id, "agent ID")
            for path in await json_files(directory):
                entity = await self._load(path)
                if entity is not None and (type is None or entity.type == type):
                    matches.append(entity)
        return EntityPage(matches[offset : offset + limit], len(matches), limit, offset)

    # ── Agent memories ────────────────────────────────────────

    async def store_agent_memory(self, agent_id: str, memory: dict[str, Any]) -> Entity:
        """Store a ``memory`` entity in an agent's partition."""
        if not isinstance(memory, dict) or not memory.get("content"):
            raise ValidationError("Memory must have content")
        check_name(agent_id, "agent ID")
        entity = Entity(
            id=memory.get("id") or generate_id("memory"),
            type="memory",
            attributes={
                "agentId": agent_id,
                "content": memory["content"],
                "timestamp": memory.get("timestamp") or now_iso(),
                "tags": memory.get("tags") or [],
                "metadata": memory.get("metadata") or {},
            },
        )
        return await self.store(entity, "agent")

    async def get_agent_memory(self, agent_id: str, memory_id: str) -> Entity:
        """Fetch a memory, checking that it belongs to ``agent_id``."""
        memory = await self.get(memory_id, "agent")
        if memory.agent_id != agent_id:
            raise ValidationError(f"Memory {memory_id} does not belong to agent {agent_id}")
        return memory
