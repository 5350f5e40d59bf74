"""
Stored record model backing the SQL record store.

Key design decisions:
- One table for every record kind (retry records, confirmed registrations);
  the JSON `data` column holds the serialized pydantic model
- `user_id` and `status` are lifted out of the JSON so the two query paths
  (records of a user, records in a status) hit an index
- `version` column enables optimistic locking for concurrent read-modify-write
"""

from sqlalchemy import JSON, Column, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from registrar.db.base import Base, TimestampMixin


class StoredRecord(Base, TimestampMixin):
    __tablename__ = "records"

    kind = Column(String(32), primary_key=True)
    id = Column(String(64), primary_key=True)
    user_id = Column(String(128), nullable=False)
    status = Column(String(20), nullable=False)
    data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_records_kind_user", "kind", "user_id"),
        Index("ix_records_kind_status", "kind", "status"),
    )

    def __repr__(self) -> str:
        return f"<StoredRecord(kind={self.kind}, id={self.id}, status={self.status}, version={self.version})>"
