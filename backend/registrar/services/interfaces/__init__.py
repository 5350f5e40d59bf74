"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .record_store import RecordStore, DuplicateRecordError
from .memory_store import InMemoryRecordStore

__all__ = ['RecordStore', 'DuplicateRecordError', 'InMemoryRecordStore']
