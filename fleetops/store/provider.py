import threading
from typing import Any, Callable, Dict, List, Optional

import structlog


logger = structlog.get_logger(__name__)

Document = Dict[str, Any]
Listener = Callable[[List[Document]], None]

TRIPS = "trips"
DIESEL = "diesel"
MISSED_LOADS = "missedLoads"

# Collection -> field the snapshot is ordered by (descending)
COLLECTION_ORDERING = {
    TRIPS: "start_date",
    DIESEL: "date",
    MISSED_LOADS: "recorded_at",
}


class StoreWriteError(Exception):
    """A provider could not persist a write."""


def sort_key(collection: str, doc: Document) -> str:
    value = doc.get(COLLECTION_ORDERING[collection])
    return "" if value is None else str(value)


def sort_documents(collection: str, docs: List[Document]) -> List[Document]:
    return sorted(docs, key=lambda d: sort_key(collection, d), reverse=True)


class RecordStore:
    """
    Document store with per-collection change subscriptions.

    Providers implement snapshot/get/add/update/delete; every successful write
    pushes a full, ordered snapshot of the collection to its subscribers.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._listener_lock = threading.Lock()

    def snapshot(self, collection: str) -> List[Document]:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    def add(self, collection: str, doc: Document) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, doc: Document) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def subscribe(self, collection: str, callback: Listener) -> Callable[[], None]:
        """Register a listener; it receives the current snapshot immediately."""
        self._check_collection(collection)
        with self._listener_lock:
            self._listeners.setdefault(collection, []).append(callback)
        callback(self.snapshot(collection))

        def unsubscribe() -> None:
            with self._listener_lock:
                listeners = self._listeners.get(collection, [])
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        with self._listener_lock:
            targets = list(self._listeners.get(collection, []))
        if not targets:
            return
        docs = self.snapshot(collection)
        for callback in targets:
            try:
                callback(docs)
            except Exception:
                logger.exception("store_listener_failed", collection=collection)

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in COLLECTION_ORDERING:
            raise ValueError(f"Unknown collection: {collection}")
