"""In-memory indices over entities and relationships.

Indices are derived data: they are rebuilt from the files on disk every time
a store starts, and mutated in the same locked section as the file they
describe. Sets are dicts with ``None`` values so iteration follows insertion
order, which keeps search ranking and graph traversal reproducible.
Relationship sets are kept sorted by ``(created, id)`` whether built by a
rebuild or by live writes.
"""

from __future__ import annotations

import re
from typing import Any

from kgmem.memory.models import Entity, Relationship

_PUNCT = re.compile(r"[^\w\s]")

TEXT_FIELDS = ("content", "name", "description")

OrderedIds = dict[str, None]


def tokenize(text: Any) -> list[str]:
    """Lowercase, turn punctuation into spaces, split, keep tokens longer than 1."""
    if not isinstance(text, str) or not text:
        return []
    return [t for t in _PUNCT.sub(" ", text.lower()).split() if len(t) > 1]


def index_value(value: Any) -> str:
    """String form used as a metadata index key."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _add(index: dict[str, OrderedIds], key: str, item_id: str) -> None:
    index.setdefault(key, {})[item_id] = None


def _discard(index: dict[str, OrderedIds], key: str, item_id: str) -> None:
    ids = index.get(key)
    if ids is None:
        return
    ids.pop(item_id, None)
    if not ids:
        del index[key]


class EntityIndex:
    """Text, metadata, agent-ownership and type indices for entities."""

    def __init__(self) -> None:
        self.text: dict[str, OrderedIds] = {}
        self.metadata: dict[str, dict[str, OrderedIds]] = {}
        self.agents: dict[str, OrderedIds] = {}
        self._types: dict[str, str] = {}
        self._owners: dict[str, str] = {}
        # Reverse maps so removal touches only the entries an entity added
        self._tokens: dict[str, set[str]] = {}
        self._pairs: dict[str, set[tuple[str, str]]] = {}

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._types

    def clear(self) -> None:
        for mapping in (self.text, self.metadata, self.agents, self._types,
                        self._owners, self._tokens, self._pairs):
            mapping.clear()

    # ── Mutation ──────────────────────────────────────────────

    def add(self, entity: Entity) -> None:
        eid = entity.id
        self._types[eid] = entity.type

        tokens = self._tokens.setdefault(eid, set())
        for name in TEXT_FIELDS:
            for token in tokenize(entity.get(name)):
                _add(self.text, token, eid)
                tokens.add(token)

        pairs = self._pairs.setdefault(eid, set())
        metadata = entity.get("metadata")
        if isinstance(metadata, dict):
            for key, value in metadata.items():
                self._add_metadata(eid, str(key), value, pairs)
        tags = entity.get("tags")
        if tags is not None:
            self._add_metadata(eid, "tags", tags, pairs)

        agent_id = entity.agent_id
        if agent_id:
            _add(self.agents, agent_id, eid)
            self._owners[eid] = agent_id

    def _add_metadata(self, eid: str, key: str, value: Any, pairs: set[tuple[str, str]]) -> None:
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None or isinstance(item, (dict, list, tuple)):
                continue
            text = index_value(item)
            _add(self.metadata.setdefault(key, {}), text, eid)
            pairs.add((key, text))

    def remove(self, entity_id: str) -> None:
        for token in self._tokens.pop(entity_id, ()):
            _discard(self.text, token, entity_id)
        for key, text in self._pairs.pop(entity_id, ()):
            values = self.metadata.get(key)
            if values is not None:
                _discard(values, text, entity_id)
                if not values:
                    del self.metadata[key]
        owner = self._owners.pop(entity_id, None)
        if owner is not None:
            _discard(self.agents, owner, entity_id)
        self._types.pop(entity_id, None)

    def replace(self, entity: Entity) -> None:
        self.remove(entity.id)
        self.add(entity)

    # ── Lookup ────────────────────────────────────────────────

    def token_ids(self, token: str) -> list[str]:
        return list(self.text.get(token, ()))

    def metadata_ids(self, key: str, value: Any) -> list[str] | None:
        """IDs indexed under ``key=value``, or None if the pair is unknown."""
        values = self.metadata.get(key)
        if values is None:
            return None
        ids = values.get(index_value(value))
        return list(ids) if ids is not None else None

    def agent_ids(self, agent_id: str) -> list[str] | None:
        ids = self.agents.get(agent_id)
        return list(ids) if ids is not None else None

    def type_of(self, entity_id: str) -> str | None:
        return self._types.get(entity_id)

    def owner_of(self, entity_id: str) -> str | None:
        return self._owners.get(entity_id)


class RelationshipIndex:
    """Source, target and type indices for relationships."""

    def __init__(self) -> None:
        self.source: dict[str, OrderedIds] = {}
        self.target: dict[str, OrderedIds] = {}
        self.type: dict[str, OrderedIds] = {}
        # The indexed version of each relationship, so removal uses the keys it was added under
        self._known: dict[str, Relationship] = {}

    def __len__(self) -> int:
        return len(self._known)

    def __contains__(self, relationship_id: object) -> bool:
        return relationship_id in self._known

    def clear(self) -> None:
        for mapping in (self.source, self.target, self.type, self._known):
            mapping.clear()

    def _order(self, relationship_id: str) -> tuple[str, str]:
        rel = self._known[relationship_id]
        return rel.created, rel.id

    def _insert(self, index: dict[str, OrderedIds], key: str, relationship_id: str) -> None:
        """Add to ``index[key]`` keeping (created, id) order, the order a rebuild produces."""
        ids = index.setdefault(key, {})
        if relationship_id in ids:
            return
        ids[relationship_id] = None
        order = list(ids)
        if len(order) > 1 and self._order(order[-2]) > self._order(relationship_id):
            index[key] = dict.fromkeys(sorted(order, key=self._order))

    def add(self, rel: Relationship) -> None:
        """Index ``rel``; re-adding a known relationship keeps its position."""
        known = self._known.get(rel.id)
        if known is not None:
            if known.created != rel.created:
                self.remove(rel.id)
            else:
                if known.source_id != rel.source_id:
                    _discard(self.source, known.source_id, rel.id)
                if known.target_id != rel.target_id:
                    _discard(self.target, known.target_id, rel.id)
                if known.type != rel.type:
                    _discard(self.type, known.type, rel.id)
        self._known[rel.id] = rel
        self._insert(self.source, rel.source_id, rel.id)
        self._insert(self.target, rel.target_id, rel.id)
        self._insert(self.type, rel.type, rel.id)

    def remove(self, relationship_id: str) -> None:
        rel = self._known.pop(relationship_id, None)
        if rel is None:
            return
        _discard(self.source, rel.source_id, rel.id)
        _discard(self.target, rel.target_id, rel.id)
        _discard(self.type, rel.type, rel.id)

    def outgoing(self, entity_id: str) -> list[str]:
        return list(self.source.get(entity_id, ()))

    def incoming(self, entity_id: str) -> list[str]:
        return list(self.target.get(entity_id, ()))

    def of_type(self, rel_type: str) -> list[str]:
        return list(self.type.get(rel_type, ()))

    def ids(self) -> list[str]:
        return list(self._known)
