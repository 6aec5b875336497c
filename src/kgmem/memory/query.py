"""Query engine: text, metadata, combined and graph-expanded search."""

from __future__ import annotations

import logging
from typing import Any

from kgmem.errors import KgmemError, NotFoundError, ValidationError
from kgmem.memory.graph import RelationshipGraph
from kgmem.memory.indices import tokenize
from kgmem.memory.models import SearchHit, SearchResults
from kgmem.memory.store import EntityStore, page_args

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {"text": 0.6, "vector": 0.3, "metadata": 0.1}
RELATED_SCORE = 0.5


class QueryEngine:
    """Search over the entity store's indices, optionally expanded through the graph."""

    def __init__(self, store: EntityStore, graph: RelationshipGraph) -> None:
        self.store = store
        self.graph = graph

    def _keep(self, entity_id: str, type: str | None, agent_id: str | None) -> bool:
        """Filter on the type and owner indices, which cover every stored entity."""
        if agent_id is not None and self.store.index.owner_of(entity_id) != agent_id:
            return False
        if type is not None and self.store.index.type_of(entity_id) != type:
            return False
        return True

    async def _resolve(
        self, scored: list[tuple[str, float]], context: str | None
    ) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for entity_id, score in scored:
            try:
                entity = await self.store.get(entity_id, context)
            except (NotFoundError, ValidationError):
                logger.debug("Dropping unresolvable search hit %s", entity_id)
                continue
            hits.append(SearchHit(entity=entity, score=score))
        return hits

    # ── Text ──────────────────────────────────────────────────

    async def search_by_text(
        self,
        query: Any,
        limit: int | None = 10,
        offset: int | None = 0,
        threshold: float = 0.0,
        context: str | None = None,
        type: str | None = None,
        agent_id: str | None = None,
    ) -> SearchResults:
        """Score = fraction of query tokens found in an entity's indexed text."""
        limit, offset = page_args(limit, offset, default_limit=10)
        tokens = tokenize(query)
        if not tokens:
            return SearchResults(query, [], 0, limit, offset)

        counts: dict[str, int] = {}
        for token in tokens:
            for entity_id in self.store.index.token_ids(token):
                counts[entity_id] = counts.get(entity_id, 0) + 1

        scored = [
            (entity_id, hits / len(tokens))
            for entity_id, hits in counts.items()
            if hits / len(tokens) >= (threshold or 0.0)
        ]
        scored.sort(key=lambda item: item[1], reverse=True)
        scored = [item for item in scored if self._keep(item[0], type, agent_id)]

        results = await self._resolve(scored[offset : offset + limit], context)
        return SearchResults(query, results, len(scored), limit, offset)

    # ── Metadata ──────────────────────────────────────────────

    async def search_by_metadata(
        self,
        metadata: dict[str, Any],
        limit: int | None = 10,
        offset: int | None = 0,
        context: str | None = None,
        type: str | None = None,
        agent_id: str | None = None,
        match_all: bool = True,
    ) -> SearchResults:
        """Entities whose metadata matches the given pairs (all of them, or any).

        Keys or values absent from the index are ignored rather than treated
        as a failed match.
        """
        if not isinstance(metadata, dict):
            raise ValidationError("Metadata query must be an object")
        limit, offset = page_args(limit, offset, default_limit=10)

        matching: list[list[str]] = []
        for key, value in metadata.items():
            values = value if isinstance(value, (list, tuple)) else [value]
            for item in values:
                ids = self.store.index.metadata_ids(str(key), item)
                if ids is not None:
                    matching.append(ids)

        if not matching:
            return SearchResults(metadata, [], 0, limit, offset)

        if match_all:
            ids = matching[0]
            for other in matching[1:]:
                keep = set(other)
                ids = [eid for eid in ids if eid in keep]
        else:
            ids = list(dict.fromkeys(eid for group in matching for eid in group))

        ids = [eid for eid in ids if self._keep(eid, type, agent_id)]
        page = [(eid, 1.0) for eid in ids[offset : offset + limit]]
        results = await self._resolve(page, context)
        return SearchResults(metadata, results, len(ids), limit, offset)

    # ── Vector ────────────────────────────────────────────────

    async def search_by_vector(
        self,
        vector: Any,
        limit: int | None = 10,
        threshold: float = 0.7,
        context: str | None = None,
        type: str | None = None,
        agent_id: str | None = None,
    ) -> SearchResults:
        """Vector similarity is not supported; always returns no results."""
        limit, _ = page_args(limit, 0, default_limit=10)
        logger.warning("Vector search is not implemented (threshold=%s); returning no results", threshold)
        return SearchResults(None, [], 0, limit, 0)

    # ── Combined ──────────────────────────────────────────────

    async def search(
        self,
        query: Any,
        limit: int | None = 10,
        offset: int | None = 0,
        context: str | None = None,
        type: str | None = None,
        agent_id: str | None = None,
        search_vector: bool = False,
        search_metadata: bool = True,
        weights: dict[str, float] | None = None,
        vector_threshold: float = 0.7,
    ) -> SearchResults:
        """Weighted combination of text, vector and metadata scores."""
        limit, offset = page_args(limit, offset, default_limit=10)
        weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        filters = {"context": context, "type": type, "agent_id": agent_id}

        combined: dict[str, SearchHit] = {}

        text = await self.search_by_text(query, limit=limit * 2, **filters)
        for hit in text.results:
            combined[hit.entity.id] = SearchHit(
                entity=hit.entity, scores={"text": hit.score, "vector": 0.0, "metadata": 0.0}
            )

        if search_vector:
            vector = await self.search_by_vector(
                query, limit=limit * 2, threshold=vector_threshold, **filters
            )
            for hit in vector.results:
                entry = combined.setdefault(
                    hit.entity.id,
                    SearchHit(entity=hit.entity, scores={"text": 0.0, "vector": 0.0, "metadata": 0.0}),
                )
                entry.scores["vector"] = hit.score

        if search_metadata and isinstance(query, dict):
            meta = await self.search_by_metadata(query, limit=limit * 2, **filters)
            for hit in meta.results:
                entry = combined.setdefault(
                    hit.entity.id,
                    SearchHit(entity=hit.entity, scores={"text": 0.0, "vector": 0.0, "metadata": 0.0}),
                )
                entry.scores["metadata"] = 1.0

        ranked = list(combined.values())
        for hit in ranked:
            hit.score = sum(hit.scores[k] * weights.get(k, 0.0) for k in ("text", "vector", "metadata"))
        ranked.sort(key=lambda hit: hit.score, reverse=True)
        return SearchResults(query, ranked[offset : offset + limit], len(ranked), limit, offset)

    # ── Semantic ──────────────────────────────────────────────

    async def semantic_search(
        self,
        query: Any,
        limit: int | None = 10,
        threshold: float = 0.7,
        context: str | None = None,
        type: str | None = None,
        agent_id: str | None = None,
        include_related: bool = False,
        max_related_depth: int = 1,
    ) -> SearchResults:
        """Combined search, optionally topped up with graph neighbours of the best hit."""
        limit, _ = page_args(limit, 0, default_limit=10)
        results = await self.search(
            query,
            limit=limit,
            context=context,
            type=type,
            agent_id=agent_id,
            search_vector=True,
            vector_threshold=threshold,
        )
        if not include_related or not results.results:
            return results

        top = results.results[0]
        try:
            related = await self.graph.find_related(
                top.entity.id,
                max_depth=max_related_depth,
                limit=max(5, limit - len(results.results)),
            )
        except KgmemError as e:
            logger.warning("Could not expand related entities of %s: %s", top.entity.id, e)
            return results

        present = {hit.entity.id for hit in results.results}
        for entity in related.entities:
            if entity.id not in present:
                results.results.append(SearchHit(entity=entity, score=RELATED_SCORE, related=True))
                present.add(entity.id)

        results.results.sort(key=lambda hit: hit.score, reverse=True)
        results.results = results.results[:limit]
        return results
