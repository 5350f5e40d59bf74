"""
Record store interface for dependency inversion.
Allows swapping the persistence engine without changing orchestration logic.
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional

Record = dict
Mutator = Callable[[Record], Optional[Record]]


class DuplicateRecordError(ValueError):
    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} record already exists: {record_id}")
        self.kind = kind
        self.record_id = record_id


class RecordStore(ABC):
    """
    Keyed storage for JSON-compatible records, grouped by kind.

    Every record carries at least `id`, `user_id` and `status`.

    Implementations:
    - InMemoryRecordStore: per-key asyncio locks, lost on restart (tests, dev)
    - SqlRecordStore: one SQL table, optimistic locking on a version column
    """

    @abstractmethod
    async def create_record(self, kind: str, record: Record) -> Record:
        """
        Insert a new record.

        Raises:
            DuplicateRecordError: a record with the same kind and id exists
        """
        pass

    @abstractmethod
    async def get_record(self, kind: str, record_id: str) -> Optional[Record]:
        pass

    @abstractmethod
    async def update_record(self, kind: str, record_id: str, mutate: Mutator) -> Optional[Record]:
        """
        Atomic read-modify-write of one record.

        `mutate` receives a private copy of the stored record and returns the
        replacement, or None to leave the record untouched. It may be invoked
        more than once if a concurrent writer wins the race, so it must only
        depend on its argument.

        Returns:
            The stored record after the call, or None if it does not exist
        """
        pass

    @abstractmethod
    async def query_by_user(self, kind: str, user_id: str) -> list[Record]:
        """All records of a kind owned by a user, oldest first."""
        pass

    @abstractmethod
    async def query_by_status(self, kind: str, statuses: Iterable[str]) -> list[Record]:
        """All records of a kind whose status is one of `statuses`, oldest first."""
        pass
