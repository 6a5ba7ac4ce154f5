"""
Key/value storage with expiry.

Backs the session store. Two engines ship with the package:
- MemoryKeyValueStore: in-process, for single-process use and tests
- FileKeyValueStore: one JSON document per key, shared across processes
"""

from .base import KeyValueStore
from .file_ops import ensure_directory, read_json, remove_file, write_json_atomic
from .local import FileKeyValueStore
from .memory import MemoryKeyValueStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    # Low-level file operations
    "ensure_directory",
    "read_json",
    "write_json_atomic",
    "remove_file",
]
