"""
ol-ingest Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (SQLite queue, in-memory store, fake node)
"""
