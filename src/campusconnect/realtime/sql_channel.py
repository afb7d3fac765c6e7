"""
Shared-log Fan-out Channel

Broadcasts are appended to a ``broadcast_log`` table; every channel
instance, in any process pointed at the same database, tails the log from
its own high-water mark and hands new rows to its local handlers. The
sender observes its own broadcast through the same tail, not a shortcut.

Rows older than the retention window are pruned by the tailing loop; history
is served from the record store, so the log only has to outlive the poll lag.
"""

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, select

from ..core.models import Message, utc_now
from ..errors import ChannelError
from ..persistence.sql import make_engine
from .channel import FanoutChannel

logger = logging.getLogger(__name__)


class BroadcastRow(SQLModel, table=True):
    """One broadcast, in append order."""
    __tablename__ = "broadcast_log"
    __table_args__ = {"extend_existing": True}

    seq: Optional[int] = Field(default=None, primary_key=True)
    message_id: str = Field(index=True)
    payload: str
    appended_at: str = Field(default_factory=lambda: utc_now().isoformat())


class SQLLogChannel(FanoutChannel):
    """
    Cross-process channel on a shared SQL log.

    Delivery starts at the tail of the log as it stands when ``start()`` is
    called; history is the distributor's replay job, not the channel's.
    """

    def __init__(self, url: str = "sqlite:///campusconnect.db", poll_interval: float = 0.25,
                 echo: bool = False, engine: Optional[Engine] = None,
                 retention: Optional[float] = 3600.0, prune_interval: float = 60.0):
        super().__init__()
        self.poll_interval = poll_interval
        self.retention = retention
        self.prune_interval = prune_interval
        self._since_prune = 0.0
        self._owns_engine = engine is None
        self.engine = engine or make_engine(url, echo=echo)
        self._cursor: Optional[int] = None
        self._poll_task: Optional[asyncio.Task] = None
        SQLModel.metadata.create_all(self.engine, tables=[BroadcastRow.__table__])

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Mark the current tail and start tailing the log."""
        if self._cursor is None:
            self._cursor = await asyncio.to_thread(self._tail)
        if not self.running:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
            logger.info("Tailing broadcast log from seq %s every %.2fs", self._cursor, self.poll_interval)

    async def close(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._owns_engine:
            self.engine.dispose()
        await super().close()

    async def broadcast(self, message: Message) -> None:
        try:
            seq = await asyncio.to_thread(self._append, message)
        except SQLAlchemyError as e:
            raise ChannelError(f"Could not append {message.id} to broadcast log: {e}") from e
        logger.debug("Appended %s to broadcast log at seq %s", message.id, seq)

    async def poll_once(self) -> int:
        """
        Deliver rows appended since the last poll.

        Returns:
            Number of rows handed to handlers
        """
        if self._cursor is None:
            self._cursor = await asyncio.to_thread(self._tail)
        rows = await asyncio.to_thread(self._read_after, self._cursor)
        delivered = 0
        for seq, payload in rows:
            self._cursor = seq
            try:
                message = Message.model_validate_json(payload)
            except ValidationError as e:
                logger.error("Skipping unreadable broadcast log row %s: %s", seq, e)
                continue
            await self._dispatch(message)
            delivered += 1
        return delivered

    async def prune(self) -> int:
        """
        Delete log rows older than the retention window.

        Returns:
            Number of rows deleted
        """
        if not self.retention:
            return 0
        cutoff = (utc_now() - timedelta(seconds=self.retention)).isoformat()
        deleted = await asyncio.to_thread(self._delete_before, cutoff)
        if deleted:
            logger.debug("Pruned %d broadcast log rows older than %s", deleted, cutoff)
        return deleted

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
                self._since_prune += self.poll_interval
                if self._since_prune >= self.prune_interval:
                    self._since_prune = 0.0
                    await self.prune()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except SQLAlchemyError as e:
                logger.warning("Broadcast log poll failed: %s", e)
                await asyncio.sleep(self.poll_interval)
            except Exception:
                logger.exception("Broadcast log poll failed")
                await asyncio.sleep(self.poll_interval)

    def _append(self, message: Message) -> int:
        with Session(self.engine) as session:
            row = BroadcastRow(message_id=message.id, payload=message.model_dump_json())
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.seq

    def _tail(self) -> int:
        with Session(self.engine) as session:
            return session.exec(select(func.max(BroadcastRow.seq))).one() or 0

    def _read_after(self, cursor: int) -> List[tuple]:
        with Session(self.engine) as session:
            statement = select(BroadcastRow).where(BroadcastRow.seq > cursor).order_by(BroadcastRow.seq)
            return [(row.seq, row.payload) for row in session.exec(statement).all()]

    def _delete_before(self, cutoff: str) -> int:
        # appended_at is always a UTC isoformat string, so it sorts as text
        with Session(self.engine) as session:
            result = session.exec(delete(BroadcastRow).where(BroadcastRow.appended_at < cutoff))
            session.commit()
            return result.rowcount
