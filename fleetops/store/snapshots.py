from typing import Callable, List

import structlog
from pydantic import ValidationError

from ..schemas.diesel import DieselConsumptionRecord
from ..schemas.missed_loads import MissedLoad
from ..schemas.trips import Trip
from .provider import DIESEL, MISSED_LOADS, TRIPS, Document, RecordStore


logger = structlog.get_logger(__name__)


def _parse(model, collection: str, docs: List[Document]) -> list:
    parsed = []
    for doc in docs:
        try:
            parsed.append(model.model_validate(doc))
        except ValidationError as e:
            logger.warning("snapshot_document_invalid", collection=collection, doc_id=doc.get("id"), error=str(e))
    return parsed


class SnapshotCache:
    """
    Latest typed snapshot of each collection.

    Lists are replaced whole on every store notification, so a reader holding
    a list never observes a partially applied change.
    """

    def __init__(self, store: RecordStore) -> None:
        self.trips: List[Trip] = []
        self.diesel_records: List[DieselConsumptionRecord] = []
        self.missed_loads: List[MissedLoad] = []
        self._unsubscribers: List[Callable[[], None]] = [
            store.subscribe(TRIPS, self._on_trips),
            store.subscribe(DIESEL, self._on_diesel),
            store.subscribe(MISSED_LOADS, self._on_missed_loads),
        ]

    def _on_trips(self, docs: List[Document]) -> None:
        self.trips = _parse(Trip, TRIPS, docs)

    def _on_diesel(self, docs: List[Document]) -> None:
        self.diesel_records = _parse(DieselConsumptionRecord, DIESEL, docs)

    def _on_missed_loads(self, docs: List[Document]) -> None:
        self.missed_loads = _parse(MissedLoad, MISSED_LOADS, docs)

    def get_trip(self, trip_id: str):
        return next((t for t in self.trips if t.id == trip_id), None)

    def get_diesel_record(self, record_id: str):
        return next((r for r in self.diesel_records if r.id == record_id), None)

    def get_missed_load(self, load_id: str):
        return next((m for m in self.missed_loads if m.id == load_id), None)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
