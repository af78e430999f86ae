"""Lectern core package.

Modules:
- scanner: change detection against the scan watermark, scan cycles
- reconciler: catalog deletions and upserts for changed entries
- repository / database / models: SQLite catalog via SQLModel
- ids: sortable item identifiers
- archive / epub / drivers: per-format page access
- extractor: on-demand extraction pool, pages, covers, metadata
- scheduler: periodic background scanning
- config: INI parsing and config object
"""
