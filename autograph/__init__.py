"""Incremental code-structure graph for TypeScript/JavaScript workspaces.

This package provides:
- Heuristic symbol and relation extraction (extractor, imports)
- Content-hash change tracking (incremental)
- A SQLite-backed graph of entities, relations and observations (store)
- Full-workspace and single-file incremental analysis (coordinator)

User-authored observations survive re-analysis as long as the entity they
are attached to keeps its identity (file, name, kind, start line).
"""

__version__ = "0.1.0"
