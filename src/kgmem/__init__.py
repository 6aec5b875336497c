"""kgmem: file-backed entity store and knowledge graph for agent memory."""

__version__ = "0.1.0"
