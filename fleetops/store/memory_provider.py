"""
In-process record store, used by default and in tests.
"""
import copy
import threading
from typing import Dict, List, Optional

from .provider import (
    COLLECTION_ORDERING,
    Document,
    RecordStore,
    StoreWriteError,
    sort_documents,
)


class InMemoryRecordStore(RecordStore):
    def __init__(self) -> None:
        super().__init__()
        self._data: Dict[str, Dict[str, Document]] = {name: {} for name in COLLECTION_ORDERING}
        self._lock = threading.RLock()

    def snapshot(self, collection: str) -> List[Document]:
        self._check_collection(collection)
        with self._lock:
            docs = [copy.deepcopy(doc) for doc in self._data[collection].values()]
        return sort_documents(collection, docs)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        self._check_collection(collection)
        with self._lock:
            doc = self._data[collection].get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def add(self, collection: str, doc: Document) -> None:
        self._check_collection(collection)
        doc_id = doc.get("id")
        if not doc_id:
            raise StoreWriteError(f"Document for {collection} has no id")
        with self._lock:
            if doc_id in self._data[collection]:
                raise StoreWriteError(f"{collection}/{doc_id} already exists")
            self._data[collection][doc_id] = copy.deepcopy(doc)
        self._notify(collection)

    def update(self, collection: str, doc_id: str, doc: Document) -> None:
        self._check_collection(collection)
        with self._lock:
            if doc_id not in self._data[collection]:
                raise StoreWriteError(f"{collection}/{doc_id} does not exist")
            self._data[collection][doc_id] = copy.deepcopy(doc)
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        self._check_collection(collection)
        with self._lock:
            self._data[collection].pop(doc_id, None)
        self._notify(collection)
