"""
Record store factory.
Configures which persistence engine backs retry and registration records.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from registrar.core.config import Settings
from registrar.services.interfaces.memory_store import InMemoryRecordStore
from registrar.services.interfaces.record_store import RecordStore
from registrar.services.sql_record_store import SqlRecordStore


def get_record_store(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> RecordStore:
    """
    Get the configured record store.

    Store selection via RECORD_STORE:
    - "sql": SqlRecordStore over the given session factory (production)
    - "memory": InMemoryRecordStore (tests, local development)
    """
    store = settings.RECORD_STORE.lower()

    if store == "memory":
        return InMemoryRecordStore()
    if store == "sql":
        if session_factory is None:
            raise ValueError("RECORD_STORE=sql needs a database session factory")
        return SqlRecordStore(session_factory)
    raise ValueError(f"Unknown RECORD_STORE: {settings.RECORD_STORE}")
