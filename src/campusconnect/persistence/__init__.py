"""
Campus Connect Persistence Module

Record store port plus memory and SQL backends.
"""

from .base import RecordStore, RecordDict, collection_name
from .memory import MemoryRecordStore
from .sql import SQLRecordStore, make_engine

__all__ = [
    "RecordStore",
    "RecordDict",
    "collection_name",
    "MemoryRecordStore",
    "SQLRecordStore",
    "make_engine",
]
