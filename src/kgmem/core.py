"""Memory hub: wires the entity store, relationship graph and query engine.

All three share one ``PathLocks`` registry so an update that moves an
entity file and a relationship write never race on the same path.
"""

from __future__ import annotations

import logging

from kgmem.config import KgmemConfig
from kgmem.memory.graph import RelationshipGraph
from kgmem.memory.locks import PathLocks
from kgmem.memory.query import QueryEngine
from kgmem.memory.store import EntityStore

logger = logging.getLogger(__name__)


class Memory:
    """The three memory components over one storage root."""

    def __init__(self, config: KgmemConfig) -> None:
        self.config = config
        storage = config.storage
        self.locks = PathLocks(timeout=storage.lock_timeout)
        self.store = EntityStore(storage.root, cache_size=storage.cache_size, locks=self.locks)
        self.graph = RelationshipGraph(self.store, cache_size=storage.cache_size, locks=self.locks)
        self.query = QueryEngine(self.store, self.graph)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create the on-disk layout and rebuild every index. Safe to call twice."""
        if self._initialized:
            return
        logger.info("Initializing memory at %s", self.config.storage.root)
        await self.store.initialize()
        await self.graph.initialize()
        self._initialized = True
