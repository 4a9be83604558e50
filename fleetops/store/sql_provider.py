"""
SQL-backed record store.
Each document is one row of the record_documents table, keyed by
(collection, id), with the collection's ordering field copied to sort_key.
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models.models import RecordDocument
from .provider import Document, RecordStore, StoreWriteError, sort_key


class SQLRecordStore(RecordStore):
    def __init__(self, session_factory: sessionmaker):
        super().__init__()
        self._session_factory = session_factory

    def snapshot(self, collection: str) -> List[Document]:
        self._check_collection(collection)
        with self._session_factory() as db:
            rows = (
                db.query(RecordDocument)
                .filter(RecordDocument.collection == collection)
                .order_by(RecordDocument.sort_key.desc())
                .all()
            )
            return [dict(row.data) for row in rows]

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        self._check_collection(collection)
        with self._session_factory() as db:
            row = db.get(RecordDocument, (collection, doc_id))
            return dict(row.data) if row is not None else None

    def add(self, collection: str, doc: Document) -> None:
        self._check_collection(collection)
        doc_id = doc.get("id")
        if not doc_id:
            raise StoreWriteError(f"Document for {collection} has no id")
        with self._session_factory() as db:
            try:
                db.add(RecordDocument(
                    collection=collection,
                    id=doc_id,
                    data=doc,
                    sort_key=sort_key(collection, doc)[:100],
                    created_at=datetime.now(timezone.utc),
                ))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"Failed to add {collection}/{doc_id}: {e}") from e
        self._notify(collection)

    def update(self, collection: str, doc_id: str, doc: Document) -> None:
        self._check_collection(collection)
        with self._session_factory() as db:
            try:
                row = db.get(RecordDocument, (collection, doc_id))
                if row is None:
                    raise StoreWriteError(f"{collection}/{doc_id} does not exist")
                row.data = doc
                row.sort_key = sort_key(collection, doc)[:100]
                row.updated_at = datetime.now(timezone.utc)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"Failed to update {collection}/{doc_id}: {e}") from e
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        self._check_collection(collection)
        with self._session_factory() as db:
            try:
                row = db.get(RecordDocument, (collection, doc_id))
                if row is not None:
                    db.delete(row)
                    db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"Failed to delete {collection}/{doc_id}: {e}") from e
        self._notify(collection)
