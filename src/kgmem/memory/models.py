"""Records and result types for the memory store.

Entities and relationships are open-ended JSON objects on disk. In memory
they keep their fixed fields as attributes and everything else in an
``attributes`` mapping, so unknown keys survive a round trip untouched.
Wire names are camelCase; ``to_dict()`` produces the wire shape.
"""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from kgmem.errors import ValidationError

Context = Literal["agent", "project", "template", "shared"]
Direction = Literal["both", "outgoing", "incoming"]

CONTEXTS: tuple[str, ...] = ("agent", "project", "template", "shared")
DIRECTIONS: tuple[str, ...] = ("both", "outgoing", "incoming")

# Selector key that picks the sub-directory for each partitioned context.
CONTEXT_KEYS: dict[str, str] = {
    "agent": "agentId",
    "project": "projectId",
    "template": "templateId",
}

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@:+-]*$")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_id(prefix: str) -> str:
    """``<prefix>_<epoch ms>_<8 hex chars>``."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def check_name(value: Any, what: str) -> str:
    """Validate a value that becomes a file or directory name."""
    if not isinstance(value, str) or not _SAFE_NAME.match(value) or value.endswith(".tmp"):
        raise ValidationError(f"Invalid {what}: {value!r}")
    return value


@dataclass
class Entity:
    """A typed, identified record persisted as one JSON file."""

    id: str
    type: str
    created: str = ""
    updated: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)

    _FIXED = ("id", "type", "created", "updated")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        if not isinstance(data, dict):
            raise ValidationError("Entity must be an object")
        if not data.get("type"):
            raise ValidationError("Entity must have a type")
        return cls(
            id=data.get("id") or "",
            type=data["type"],
            created=data.get("created") or "",
            updated=data.get("updated") or "",
            attributes={k: v for k, v in data.items() if k not in cls._FIXED},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            **self.attributes,
            "created": self.created,
            "updated": self.updated,
        }

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    @property
    def agent_id(self) -> str | None:
        return self.attributes.get("agentId")


@dataclass
class Relationship:
    """A typed, directed edge between two entity IDs."""

    id: str
    source_id: str
    target_id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    created: str = ""
    updated: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)

    _FIXED = ("id", "sourceId", "targetId", "type", "properties", "created", "updated")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Relationship:
        if not isinstance(data, dict):
            raise ValidationError("Relationship must be an object")
        for key, label in (("sourceId", "a source ID"), ("targetId", "a target ID"), ("type", "a type")):
            if not data.get(key):
                raise ValidationError(f"Relationship must have {label}")
        return cls(
            id=data.get("id") or "",
            source_id=data["sourceId"],
            target_id=data["targetId"],
            type=data["type"],
            properties=dict(data.get("properties") or {}),
            created=data.get("created") or "",
            updated=data.get("updated") or "",
            attributes={k: v for k, v in data.items() if k not in cls._FIXED},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sourceId": self.source_id,
            "targetId": self.target_id,
            "type": self.type,
            "properties": self.properties,
            **self.attributes,
            "created": self.created,
            "updated": self.updated,
        }

    def other_end(self, entity_id: str) -> str:
        return self.target_id if self.source_id == entity_id else self.source_id


# ── Result types ──────────────────────────────────────────────


@dataclass
class EntityPage:
    entities: list[Entity]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass
class RelationshipPage:
    relationships: list[Relationship]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "relationships": [r.to_dict() for r in self.relationships],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass
class Hop:
    """One step of a recorded traversal path."""

    relationship_id: str
    relationship_type: str
    direction: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "relationshipId": self.relationship_id,
            "relationshipType": self.relationship_type,
            "direction": self.direction,
        }


@dataclass
class PathRecord:
    distance: int
    path: list[Hop] = field(default_factory=list)

    def extend(self, hop: Hop) -> PathRecord:
        return PathRecord(distance=self.distance + 1, path=[*self.path, hop])

    def to_dict(self) -> dict[str, Any]:
        return {"distance": self.distance, "path": [h.to_dict() for h in self.path]}


@dataclass
class Traversal:
    entities: list[Entity]
    relationships: list[Relationship]
    paths: dict[str, PathRecord]

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "paths": {k: p.to_dict() for k, p in self.paths.items()},
        }


@dataclass
class SearchHit:
    entity: Entity
    score: float = 0.0
    scores: dict[str, float] | None = None
    related: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"entity": self.entity.to_dict(), "score": self.score}
        if self.scores is not None:
            data["scores"] = dict(self.scores)
        if self.related:
            data["related"] = True
        return data


@dataclass
class SearchResults:
    query: Any
    results: list[SearchHit]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "results": [hit.to_dict() for hit in self.results],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }
