from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class RecordDocument(Base):
    """One document of a record-store collection (trips|diesel|missedLoads)"""
    __tablename__ = "record_documents"

    collection: Mapped[str] = mapped_column(String(50), primary_key=True)
    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    sort_key: Mapped[Optional[str]] = mapped_column(String(100), index=True)  # value of the collection's ordering field
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_record_collection_sort', 'collection', 'sort_key'),
    )
