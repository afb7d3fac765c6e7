"""
Campus Connect Persistence Layer - Base Classes

This module provides the abstract record store interface. The store is a set
of keyed, insertion-ordered collections of plain dictionaries; typed models
live in ``campusconnect.core`` and convert to and from records.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

RecordDict = Dict[str, Any]
RecordFilter = Callable[[RecordDict], bool]
ChangeListener = Callable[[str, List[RecordDict]], None]
CollectionName = Union[str, Enum]


def collection_name(collection: CollectionName) -> str:
    """Accept ``Collection.MESSAGES`` or ``"messages"``."""
    if isinstance(collection, Enum):
        return str(collection.value)
    return collection


class RecordStore(ABC):
    """
    Abstract base class for record stores.

    Implementations must serialize concurrent writes, raise
    ``PersistenceFailure`` when a write cannot be committed (leaving nothing
    behind), and call ``_notify`` synchronously after every successful write
    with the collection's new full snapshot.
    """

    def __init__(self):
        self._listeners: List[ChangeListener] = []

    @abstractmethod
    def create(self, collection: CollectionName, record: RecordDict) -> RecordDict:
        """
        Insert a record, assigning ``id`` and ``created_at`` when absent.

        Returns:
            The stored record as read back from the store
        """

    @abstractmethod
    def get(self, collection: CollectionName, record_id: str) -> Optional[RecordDict]:
        """Return a record by id, or None."""

    @abstractmethod
    def list(self, collection: CollectionName, filter: Optional[RecordFilter] = None) -> List[RecordDict]:
        """Return the collection in insertion order, optionally filtered."""

    @abstractmethod
    def update(self, collection: CollectionName, record_id: str, patch: RecordDict) -> Optional[RecordDict]:
        """Merge ``patch`` into a record. Returns None when the record is missing."""

    @abstractmethod
    def delete(self, collection: CollectionName, record_id: str) -> bool:
        """Delete a record. Returns True if it existed."""

    def close(self) -> None:
        """Release backend resources."""

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Function that removes the listener; safe to call more than once
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, collection: str, snapshot: List[RecordDict]) -> None:
        for listener in list(self._listeners):
            try:
                listener(collection, snapshot)
            except Exception:
                # The write is already committed; a broken listener cannot undo it
                logger.exception("Record store listener failed for %s", collection)
