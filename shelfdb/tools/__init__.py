"""
CLI tools for shelfdb.

This module provides command-line tools for:
- put / get / get-all: Single operations against a database
- info: Version and collection listing
- drop: Database deletion

Invariants:
    - Each command runs one pipeline invocation and exits
    - Output is JSON so it can be piped to other tools
"""

from .cli import ShelfCLI, main

__all__ = ["ShelfCLI", "main"]
