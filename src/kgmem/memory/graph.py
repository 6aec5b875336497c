"""Relationship graph: typed directed edges between entity IDs.

Each relationship is one JSON file under ``relations/``. Source, target and
type indices are rebuilt from those files at startup in creation order, and
kept in step with every write under the per-file lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Any

from kgmem.errors import NotFoundError, StorageError, ValidationError
from kgmem.memory.cache import BoundedCache
from kgmem.memory.files import json_files, make_dirs, read_json, remove_file, write_json
from kgmem.memory.indices import RelationshipIndex
from kgmem.memory.locks import PathLocks
from kgmem.memory.models import (
    DIRECTIONS,
    Entity,
    Hop,
    PathRecord,
    Relationship,
    RelationshipPage,
    Traversal,
    check_name,
    generate_id,
    now_iso,
)
from kgmem.memory.store import DEFAULT_LIMIT, EntityStore, page_args

logger = logging.getLogger(__name__)


def _check_types(relationship_types: Any) -> set[str] | None:
    if relationship_types is None:
        return None
    if not isinstance(relationship_types, list) or not all(
        isinstance(t, str) for t in relationship_types
    ):
        raise ValidationError("relationshipTypes must be a list of strings")
    return set(relationship_types) or None


def _check_direction(direction: str | None) -> str:
    direction = direction or "both"
    if direction not in DIRECTIONS:
        raise ValidationError(f"Invalid direction: {direction!r}")
    return direction


class RelationshipGraph:
    """Durable CRUD for relationships plus breadth-first traversal."""

    def __init__(
        self,
        store: EntityStore,
        relations_dir: Path | None = None,
        cache_size: int = 1000,
        locks: PathLocks | None = None,
    ) -> None:
        self.store = store
        self.relations_dir = relations_dir or store.root / "relations"
        self.index = RelationshipIndex()
        self.cache: BoundedCache[Relationship] = BoundedCache(cache_size)
        self.locks = locks or store.locks

    # ── Initialization ────────────────────────────────────────

    async def initialize(self) -> None:
        await make_dirs(self.relations_dir)
        await self.rebuild()

    async def rebuild(self) -> None:
        """Rescan relationship files and rebuild indices in creation order."""
        self.index.clear()
        self.cache.clear()
        loaded: list[Relationship] = []
        for path in await json_files(self.relations_dir):
            try:
                data = await read_json(path)
                if data is None:
                    continue
                data.setdefault("id", path.stem)
                loaded.append(Relationship.from_dict(data))
            except (StorageError, ValidationError) as e:
                logger.error("Skipping relationship file %s: %s", path, e)
        loaded.sort(key=lambda r: (r.created, r.id))
        for rel in loaded:
            self.index.add(rel)
            self.cache.put(rel.id, rel)
        logger.info("Relationship index rebuilt: %d relationships", len(self.index))

    def _path(self, relationship_id: str) -> Path:
        return self.relations_dir / f"{check_name(relationship_id, 'relationship ID')}.json"

    # ── CRUD ──────────────────────────────────────────────────

    async def create(self, relationship: Relationship | dict[str, Any]) -> Relationship:
        """Persist a new relationship. Endpoints are not checked for existence."""
        if not isinstance(relationship, Relationship):
            relationship = Relationship.from_dict(relationship)
        rel_id = relationship.id or generate_id("rel")
        path = self._path(rel_id)

        async with self.locks.hold(path):
            previous = await read_json(path)
            now = now_iso()
            created = Relationship(
                id=rel_id,
                source_id=relationship.source_id,
                target_id=relationship.target_id,
                type=relationship.type,
                properties=dict(relationship.properties),
                created=(previous or {}).get("created") or now,
                updated=now,
                attributes=dict(relationship.attributes),
            )
            await write_json(path, created.to_dict())
            self.index.add(created)
            self.cache.put(rel_id, created)

        logger.debug(
            "Created relationship %s: %s -[%s]-> %s",
            rel_id, created.source_id, created.type, created.target_id,
        )
        return created

    async def get(self, relationship_id: str) -> Relationship:
        cached = self.cache.get(relationship_id)
        if cached is not None:
            return cached
        data = await read_json(self._path(relationship_id))
        if data is None:
            raise NotFoundError(f"Relationship not found: {relationship_id}")
        data.setdefault("id", relationship_id)
        rel = Relationship.from_dict(data)
        self.cache.put(rel.id, rel)
        return rel

    async def update(self, relationship_id: str, updates: dict[str, Any]) -> Relationship:
        """Apply updates; ``id``, ``sourceId``, ``targetId`` and ``created`` are kept."""
        if not isinstance(updates, dict):
            raise ValidationError("Updates must be an object")
        path = self._path(relationship_id)

        async with self.locks.hold(path):
            data = await read_json(path)
            if data is None:
                raise NotFoundError(f"Relationship not found: {relationship_id}")
            data.setdefault("id", relationship_id)
            current = Relationship.from_dict(data)
            properties = updates.get("properties", current.properties)
            if not isinstance(properties, dict):
                raise ValidationError("Relationship properties must be an object")
            extra = {k: v for k, v in updates.items() if k not in Relationship._FIXED}
            updated = Relationship(
                id=current.id,
                source_id=current.source_id,
                target_id=current.target_id,
                type=updates.get("type") or current.type,
                properties=dict(properties),
                created=current.created,
                updated=now_iso(),
                attributes={**current.attributes, **extra},
            )
            await write_json(path, updated.to_dict())
            self.index.add(updated)
            self.cache.put(updated.id, updated)

        logger.debug("Updated relationship %s", relationship_id)
        return updated

    async def delete(self, relationship_id: str) -> bool:
        """Delete a relationship. Returns False if it was already absent."""
        path = self._path(relationship_id)
        async with self.locks.hold(path):
            removed = await remove_file(path)
            self.index.remove(relationship_id)
            self.cache.discard(relationship_id)

        if removed:
            logger.debug("Deleted relationship %s", relationship_id)
        return removed

    async def _touching(self, entity_id: str, direction: str) -> list[Relationship]:
        """All relationships on an entity in ``direction``; dangling index entries skipped."""
        ids: list[str] = []
        if direction in ("outgoing", "both"):
            ids.extend(self.index.outgoing(entity_id))
        if direction in ("incoming", "both"):
            ids.extend(self.index.incoming(entity_id))

        relationships: list[Relationship] = []
        seen: set[str] = set()
        for rel_id in ids:
            if rel_id in seen:
                continue  # self-loop listed under both source and target
            seen.add(rel_id)
            try:
                relationships.append(await self.get(rel_id))
            except NotFoundError:
                logger.debug("Index references missing relationship %s", rel_id)
        return relationships

    async def list_relationships(
        self,
        entity_id: str,
        type: str | None = None,
        direction: str | None = "both",
        limit: int | None = DEFAULT_LIMIT,
        offset: int | None = 0,
    ) -> RelationshipPage:
        limit, offset = page_args(limit, offset)
        direction = _check_direction(direction)
        matches = [
            rel for rel in await self._touching(entity_id, direction)
            if type is None or rel.type == type
        ]
        return RelationshipPage(matches[offset : offset + limit], len(matches), limit, offset)

    # ── Traversal ─────────────────────────────────────────────

    async def traverse(
        self,
        start_entity_id: str,
        relationship_types: list[str] | None = None,
        max_depth: int | None = 3,
        direction: str | None = "both",
    ) -> Traversal:
        """Breadth-first walk from ``start_entity_id``.

        Each reached entity records its first-discovered (fewest hops) path.
        Relationships are visited in index insertion order, so equal-depth
        ties always resolve the same way. Endpoints that no longer resolve
        are logged and skipped.
        """
        direction = _check_direction(direction)
        max_depth = 3 if max_depth is None else int(max_depth)
        types = _check_types(relationship_types)

        start = await self.store.get(start_entity_id)
        entities: list[Entity] = [start]
        relationships: dict[str, Relationship] = {}
        paths: dict[str, PathRecord] = {start_entity_id: PathRecord(distance=0)}
        visited = {start_entity_id}

        queue: deque[tuple[str, int]] = deque([(start_entity_id, 0)])
        while queue:
            entity_id, depth = queue.popleft()
            if depth >= max_depth:
                continue

            for rel in await self._touching(entity_id, direction):
                if types is not None and rel.type not in types:
                    continue
                relationships.setdefault(rel.id, rel)

                connected_id = rel.other_end(entity_id)
                if connected_id in visited:
                    continue
                visited.add(connected_id)

                try:
                    connected = await self.store.get(connected_id)
                except (NotFoundError, ValidationError):
                    logger.warning(
                        "Skipping unresolved entity %s (via relationship %s)", connected_id, rel.id
                    )
                    continue

                entities.append(connected)
                hop = Hop(
                    relationship_id=rel.id,
                    relationship_type=rel.type,
                    direction="outgoing" if rel.source_id == entity_id else "incoming",
                )
                paths[connected_id] = paths[entity_id].extend(hop)
                queue.append((connected_id, depth + 1))

        return Traversal(entities=entities, relationships=list(relationships.values()), paths=paths)

    async def find_related(
        self,
        entity_id: str,
        relationship_types: list[str] | None = None,
        max_depth: int | None = 1,
        direction: str | None = "both",
        limit: int | None = 10,
    ) -> Traversal:
        """Entities reachable from ``entity_id``, nearest first, start excluded."""
        result = await self.traverse(entity_id, relationship_types, max_depth, direction)
        limit = 10 if limit is None else int(limit)
        related = [e for e in result.entities if e.id != entity_id]
        related.sort(key=lambda e: result.paths[e.id].distance)
        return Traversal(entities=related[:limit], relationships=result.relationships, paths=result.paths)

    async def find_common_connections(
        self,
        entity_ids: list[str],
        relationship_types: list[str] | None = None,
        max_depth: int | None = 2,
        direction: str | None = "both",
        limit: int | None = 10,
    ) -> list[Entity]:
        """Entities reachable from every one of ``entity_ids``, by mean distance."""
        if not isinstance(entity_ids, list) or len(entity_ids) < 2:
            raise ValidationError("At least two entity IDs are required")
        limit = 10 if limit is None else int(limit)

        results = await asyncio.gather(
            *(self.traverse(eid, relationship_types, max_depth, direction) for eid in entity_ids)
        )

        common = [e for e in results[0].entities if e.id not in entity_ids]
        for result in results[1:]:
            reached = {e.id for e in result.entities}
            common = [e for e in common if e.id in reached]

        def mean_distance(entity: Entity) -> float:
            distances = [r.paths[entity.id].distance for r in results if entity.id in r.paths]
            return sum(distances) / len(distances)

        common.sort(key=mean_distance)
        return common[:limit]
