"""
SQL-backed record store with optimistic locking.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  A scheduled retry attempt commits its result while the user abandons the
  same record. Both read status=pending, both write. Whichever lands last
  wins, and an abandoned record can silently turn into a success.

Solution:
  Every row carries a `version` column.

  1. Read the row and its current version
  2. Apply the caller's mutation to the decoded record
  3. UPDATE records SET data = :new, version = version + 1
     WHERE kind = :kind AND id = :id AND version = :current_version
  4. If rows_affected == 0, someone else wrote in between -> re-read and
     re-apply the mutation against the fresh state

  The mutation sees the winner's state on the retry, so a terminal status
  written by the winner is respected by the loser.
"""

import copy
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from registrar.core.errors import ConcurrentUpdateError
from registrar.core.logging import get_logger
from registrar.models.record import StoredRecord
from registrar.services.interfaces.record_store import DuplicateRecordError, Mutator, Record, RecordStore

logger = get_logger(__name__)

MAX_UPDATE_ATTEMPTS = 5


class SqlRecordStore(RecordStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_update_attempts: int = MAX_UPDATE_ATTEMPTS,
    ):
        self._session_factory = session_factory
        self.max_update_attempts = max_update_attempts

    async def create_record(self, kind: str, record: Record) -> Record:
        async with self._session_factory() as session:
            session.add(
                StoredRecord(
                    kind=kind,
                    id=record["id"],
                    user_id=record["user_id"],
                    status=record["status"],
                    data=record,
                    version=1,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateRecordError(kind, record["id"]) from exc
        return copy.deepcopy(record)

    async def get_record(self, kind: str, record_id: str) -> Optional[Record]:
        async with self._session_factory() as session:
            row = await self._load(session, kind, record_id)
            return copy.deepcopy(row.data) if row is not None else None

    async def update_record(self, kind: str, record_id: str, mutate: Mutator) -> Optional[Record]:
        for attempt in range(1, self.max_update_attempts + 1):
            async with self._session_factory() as session:
                row = await self._load(session, kind, record_id)
                if row is None:
                    return None

                current = copy.deepcopy(row.data)
                updated = mutate(copy.deepcopy(current))
                if updated is None:
                    return current

                # Optimistic lock - update only if version matches
                result = await session.execute(
                    update(StoredRecord)
                    .where(
                        StoredRecord.kind == kind,
                        StoredRecord.id == record_id,
                        StoredRecord.version == row.version,
                    )
                    .values(
                        data=updated,
                        status=updated["status"],
                        user_id=updated["user_id"],
                        version=StoredRecord.version + 1,
                        updated_at=func.now(),
                    )
                )

                if result.rowcount == 0:
                    logger.info(
                        "record_update_retry",
                        kind=kind,
                        record_id=record_id,
                        attempt=attempt,
                        reason="version_conflict",
                    )
                    await session.rollback()
                    continue

                await session.commit()
                return updated

        raise ConcurrentUpdateError(
            f"Could not update {kind} record {record_id} after {self.max_update_attempts} attempts"
        )

    async def query_by_user(self, kind: str, user_id: str) -> list[Record]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredRecord)
                .where(StoredRecord.kind == kind, StoredRecord.user_id == user_id)
                .order_by(StoredRecord.created_at.asc(), StoredRecord.id.asc())
            )
            return [copy.deepcopy(row.data) for row in result.scalars().all()]

    async def query_by_status(self, kind: str, statuses: Iterable[str]) -> list[Record]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredRecord)
                .where(StoredRecord.kind == kind, StoredRecord.status.in_(list(statuses)))
                .order_by(StoredRecord.created_at.asc(), StoredRecord.id.asc())
            )
            return [copy.deepcopy(row.data) for row in result.scalars().all()]

    @staticmethod
    async def _load(session: AsyncSession, kind: str, record_id: str) -> Optional[StoredRecord]:
        result = await session.execute(
            select(StoredRecord).where(StoredRecord.kind == kind, StoredRecord.id == record_id)
        )
        return result.scalar_one_or_none()
