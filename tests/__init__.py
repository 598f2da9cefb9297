"""
shelfdb Test Suite.

This package contains:
- unit/: Unit tests (engines, pipeline components, config, logging)
- integration/: Integration tests (full pipeline and CLI on memory and SQLite)
"""
