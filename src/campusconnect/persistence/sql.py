"""
Campus Connect Persistence Layer - SQL Backend

Record store on SQLModel. Every collection shares one ``records`` table;
each record is stored as a JSON document keyed by (collection, record_id)
and ordered by an autoincrement sequence.
"""

import json
import logging
import threading
from typing import List, Optional

from sqlalchemy import UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..core.models import new_id, utc_now
from ..errors import PersistenceFailure
from .base import CollectionName, RecordDict, RecordFilter, RecordStore, collection_name

logger = logging.getLogger(__name__)


class RecordRow(SQLModel, table=True):
    """One stored record."""
    __tablename__ = "records"
    __table_args__ = (UniqueConstraint("collection", "record_id"), {"extend_existing": True})

    seq: Optional[int] = Field(default=None, primary_key=True)
    collection: str = Field(index=True)
    record_id: str = Field(index=True)
    data: str


def make_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine usable from worker threads.

    In-memory SQLite gets a single shared connection, otherwise every
    connection would see its own empty database.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo)


class SQLRecordStore(RecordStore):
    """
    SQL record store.

    Each write runs in its own transaction and reads the result back before
    committing, so a reported failure always means nothing was written. A
    lock serializes writes issued from this process; the database serializes
    writers across processes.
    """

    def __init__(self, url: str = "sqlite:///campusconnect.db", echo: bool = False,
                 engine: Optional[Engine] = None):
        super().__init__()
        self.engine = engine or make_engine(url, echo=echo)
        self._lock = threading.RLock()
        SQLModel.metadata.create_all(self.engine, tables=[RecordRow.__table__])
        logger.info("SQL record store ready: %s", self.engine.url)

    @staticmethod
    def _load(row: RecordRow) -> RecordDict:
        return json.loads(row.data)

    def _row(self, session: Session, name: str, record_id: str) -> Optional[RecordRow]:
        statement = select(RecordRow).where(
            RecordRow.collection == name, RecordRow.record_id == record_id
        )
        return session.exec(statement).first()

    def _rows(self, session: Session, name: str) -> List[RecordRow]:
        statement = select(RecordRow).where(RecordRow.collection == name).order_by(RecordRow.seq)
        return list(session.exec(statement).all())

    def create(self, collection: CollectionName, record: RecordDict) -> RecordDict:
        name = collection_name(collection)
        stored = dict(record)
        stored.setdefault("id", new_id())
        stored.setdefault("created_at", utc_now().isoformat())

        with self._lock:
            try:
                with Session(self.engine) as session:
                    row = RecordRow(collection=name, record_id=stored["id"], data=json.dumps(stored))
                    session.add(row)
                    session.flush()
                    result = self._load(row)
                    snapshot = [self._load(r) for r in self._rows(session, name)]
                    session.commit()
            except (SQLAlchemyError, TypeError, ValueError) as e:
                logger.error("Failed to create %s/%s: %s", name, stored["id"], e)
                raise PersistenceFailure(f"Could not create {name}/{stored['id']}: {e}") from e

            logger.debug("Created %s/%s", name, stored["id"])
            self._notify(name, snapshot)
            return result

    def get(self, collection: CollectionName, record_id: str) -> Optional[RecordDict]:
        with Session(self.engine) as session:
            row = self._row(session, collection_name(collection), record_id)
            return self._load(row) if row is not None else None

    def list(self, collection: CollectionName, filter: Optional[RecordFilter] = None) -> List[RecordDict]:
        with Session(self.engine) as session:
            records = [self._load(row) for row in self._rows(session, collection_name(collection))]
        if filter is None:
            return records
        return [record for record in records if filter(record)]

    def update(self, collection: CollectionName, record_id: str, patch: RecordDict) -> Optional[RecordDict]:
        name = collection_name(collection)
        with self._lock:
            try:
                with Session(self.engine) as session:
                    row = self._row(session, name, record_id)
                    if row is None:
                        return None
                    data = self._load(row)
                    data.update({k: v for k, v in patch.items() if k != "id"})
                    row.data = json.dumps(data)
                    session.add(row)
                    session.flush()
                    result = self._load(row)
                    snapshot = [self._load(r) for r in self._rows(session, name)]
                    session.commit()
            except (SQLAlchemyError, TypeError, ValueError) as e:
                logger.error("Failed to update %s/%s: %s", name, record_id, e)
                raise PersistenceFailure(f"Could not update {name}/{record_id}: {e}") from e

            logger.debug("Updated %s/%s", name, record_id)
            self._notify(name, snapshot)
            return result

    def delete(self, collection: CollectionName, record_id: str) -> bool:
        name = collection_name(collection)
        with self._lock:
            try:
                with Session(self.engine) as session:
                    row = self._row(session, name, record_id)
                    if row is None:
                        return False
                    session.delete(row)
                    session.flush()
                    snapshot = [self._load(r) for r in self._rows(session, name)]
                    session.commit()
            except SQLAlchemyError as e:
                logger.error("Failed to delete %s/%s: %s", name, record_id, e)
                raise PersistenceFailure(f"Could not delete {name}/{record_id}: {e}") from e

            logger.debug("Deleted %s/%s", name, record_id)
            self._notify(name, snapshot)
            return True

    def close(self) -> None:
        self.engine.dispose()
