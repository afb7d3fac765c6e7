"""
Campus Connect Persistence Layer - Memory Backend

In-memory record store for development, tests and single-process setups.
Data is lost when the process exits.
"""

import copy
import logging
import threading
from typing import Dict, List, Optional

from ..core.models import new_id, utc_now
from ..errors import PersistenceFailure
from .base import CollectionName, RecordDict, RecordFilter, RecordStore, collection_name

logger = logging.getLogger(__name__)


class MemoryRecordStore(RecordStore):
    """
    In-memory record store.

    One re-entrant lock serializes every write together with its read-back
    and listener notification, so listeners observe snapshots in write order.
    """

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, RecordDict]] = {}
        self._lock = threading.RLock()

    def _collection(self, collection: CollectionName) -> Dict[str, RecordDict]:
        return self._data.setdefault(collection_name(collection), {})

    def _snapshot(self, name: str) -> List[RecordDict]:
        return [copy.deepcopy(record) for record in self._data.get(name, {}).values()]

    def create(self, collection: CollectionName, record: RecordDict) -> RecordDict:
        name = collection_name(collection)
        with self._lock:
            stored = copy.deepcopy(record)
            stored.setdefault("id", new_id())
            stored.setdefault("created_at", utc_now().isoformat())

            records = self._collection(name)
            if stored["id"] in records:
                raise PersistenceFailure(f"{name}/{stored['id']} already exists")

            records[stored["id"]] = stored
            logger.debug("Created %s/%s", name, stored["id"])
            result = copy.deepcopy(stored)
            self._notify(name, self._snapshot(name))
            return result

    def get(self, collection: CollectionName, record_id: str) -> Optional[RecordDict]:
        with self._lock:
            record = self._collection(collection).get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def list(self, collection: CollectionName, filter: Optional[RecordFilter] = None) -> List[RecordDict]:
        with self._lock:
            records = self._snapshot(collection_name(collection))
        if filter is None:
            return records
        return [record for record in records if filter(record)]

    def update(self, collection: CollectionName, record_id: str, patch: RecordDict) -> Optional[RecordDict]:
        name = collection_name(collection)
        with self._lock:
            records = self._collection(name)
            if record_id not in records:
                return None

            updated = copy.deepcopy(records[record_id])
            updated.update({k: copy.deepcopy(v) for k, v in patch.items() if k != "id"})
            records[record_id] = updated
            logger.debug("Updated %s/%s", name, record_id)
            result = copy.deepcopy(updated)
            self._notify(name, self._snapshot(name))
            return result

    def delete(self, collection: CollectionName, record_id: str) -> bool:
        name = collection_name(collection)
        with self._lock:
            records = self._collection(name)
            if records.pop(record_id, None) is None:
                return False
            logger.debug("Deleted %s/%s", name, record_id)
            self._notify(name, self._snapshot(name))
            return True

