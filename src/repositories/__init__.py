"""Storage implementations for the pipeline."""

from repositories.memory import MemoryStorage
from repositories.storage import SqlStorage, ensure_schema

__all__ = ["MemoryStorage", "SqlStorage", "ensure_schema"]
