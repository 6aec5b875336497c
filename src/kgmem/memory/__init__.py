"""Entity store, relationship graph and query engine.

Layout:
    ~/.kgmem/memory/
    ├── agents/<agentId>/<id>.json      # Entities owned by one agent
    ├── projects/<projectId>/<id>.json  # Entities scoped to a project
    ├── templates/<templateId>/<id>.json
    ├── shared/<id>.json                # Everything without a partition
    └── relations/<id>.json             # One file per relationship

Every file is a JSON object written atomically (``<name>.tmp`` + rename).
Indices live in memory only and are rebuilt from these files at startup.
"""
