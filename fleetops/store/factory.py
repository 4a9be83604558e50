from pathlib import Path

from ..config import settings
from ..db import Base, SessionLocal, engine
from .memory_provider import InMemoryRecordStore
from .provider import RecordStore
from .sql_provider import SQLRecordStore


def get_record_store() -> RecordStore:
    """Get record store provider based on configuration"""
    if settings.store_backend == "sql":
        if settings.auto_create_db:
            if settings.database_url.startswith("sqlite:///"):
                Path(settings.database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
            Base.metadata.create_all(bind=engine)
        return SQLRecordStore(SessionLocal)
    return InMemoryRecordStore()
