"""
In-memory record store.
Single-process only; records do not survive a restart.
"""

import asyncio
import copy
from collections import defaultdict
from typing import Iterable, Optional

from registrar.services.interfaces.record_store import DuplicateRecordError, Mutator, Record, RecordStore


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store with one asyncio.Lock per record.

    Use when:
    - Running tests
    - Local development without a database
    """

    def __init__(self):
        self._records: dict[tuple[str, str], Record] = {}
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_record(self, kind: str, record: Record) -> Record:
        key = (kind, record["id"])
        async with self._locks[key]:
            if key in self._records:
                raise DuplicateRecordError(kind, record["id"])
            self._records[key] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def get_record(self, kind: str, record_id: str) -> Optional[Record]:
        record = self._records.get((kind, record_id))
        return copy.deepcopy(record) if record is not None else None

    async def update_record(self, kind: str, record_id: str, mutate: Mutator) -> Optional[Record]:
        key = (kind, record_id)
        async with self._locks[key]:
            current = self._records.get(key)
            if current is None:
                return None
            updated = mutate(copy.deepcopy(current))
            if updated is None:
                return copy.deepcopy(current)
            self._records[key] = copy.deepcopy(updated)
            return copy.deepcopy(updated)

    async def query_by_user(self, kind: str, user_id: str) -> list[Record]:
        return [
            copy.deepcopy(record)
            for (record_kind, _), record in self._records.items()
            if record_kind == kind and record.get("user_id") == user_id
        ]

    async def query_by_status(self, kind: str, statuses: Iterable[str]) -> list[Record]:
        wanted = set(statuses)
        return [
            copy.deepcopy(record)
            for (record_kind, _), record in self._records.items()
            if record_kind == kind and record.get("status") in wanted
        ]
