"""
Event Distribution Layer

``EventDistributor`` is one session's gateway to the realtime layer:

- ``publish`` stamps a draft, persists it, then broadcasts it
- ``subscribe`` hands out an ``Inbox`` fed by the channel and by a replay of
  the persisted messages relevant to the session's actor
- ``resync`` and the optional polling loop replay the store again as a
  fallback path; the inbox never accepts an id it already holds, so every
  replay is idempotent

The publisher's own inbox learns about its message from the channel like
every other session does.
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from ..config import DistributionConfig
from ..core.models import Actor, Collection, Message, MessageDraft, new_id, utc_now
from ..errors import ChannelError
from ..identity import SessionIdentity
from ..persistence.base import RecordStore
from .channel import FanoutChannel
from .inbox import Consumer, Inbox

logger = logging.getLogger(__name__)


def relevant_to(actor: Actor):
    """Filter for messages an actor should see: sent, received, or group."""
    def accept(message: Message) -> bool:
        return message.concerns(actor.id)
    return accept


def conversation(messages: Iterable[Message], user_a: str, user_b: str) -> List[Message]:
    """The 1:1 thread between two users, in the order given."""
    pair = {user_a, user_b}
    return [
        m for m in messages
        if m.receiver_id is not None and {m.sender_id, m.receiver_id} == pair
    ]


def group_messages(messages: Iterable[Message]) -> List[Message]:
    return [m for m in messages if m.is_group]


class EventDistributor:
    """
    Publishes messages and manages the inboxes of one session.

    Args:
        identity: The session's identity holder
        store: Record store holding the ``messages`` collection
        channel: Fan-out channel shared with every other session
        config: Distribution settings (seen-set capacity, fallback polling)
    """

    def __init__(self, identity: SessionIdentity, store: RecordStore, channel: FanoutChannel,
                 config: Optional[DistributionConfig] = None):
        self.identity = identity
        self.store = store
        self.channel = channel
        self.config = config or DistributionConfig()
        self._inboxes: List[Inbox] = []
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def inboxes(self) -> Tuple[Inbox, ...]:
        return tuple(self._inboxes)

    def _forget(self, inbox: Inbox) -> None:
        if inbox in self._inboxes:
            self._inboxes.remove(inbox)

    async def publish(self, draft: MessageDraft) -> Message:
        """
        Stamp, persist and broadcast a message.

        Returns:
            The stamped message

        Raises:
            NotAuthenticated: If no actor is bound
            PersistenceFailure: If the store rejects the write; nothing is broadcast
        """
        actor = self.identity.require()
        message = Message(
            id=new_id(),
            sender_id=actor.id,
            receiver_id=draft.receiver_id,
            content=draft.content,
            attachment=draft.attachment,
            created_at=utc_now(),
        )

        # A PersistenceFailure propagates from here and nothing is broadcast
        stored = await asyncio.to_thread(self.store.create, Collection.MESSAGES, message.to_record())
        message = Message.from_record(stored)
        logger.info("Published message %s from %s to %s", message.id, actor.id, message.receiver_id or "group")

        try:
            await self.channel.broadcast(message)
        except ChannelError as e:
            # Sessions that missed it pick it up on their next replay
            logger.warning("Broadcast of %s deferred: %s", message.id, e)

        return message

    async def subscribe(self, consumer: Optional[Consumer] = None) -> Inbox:
        """
        Open an inbox for the bound actor.

        The inbox is attached to the channel before the replay runs, so a
        message broadcast in between is not lost; if it shows up through
        both paths the dedup drops the second copy.

        Raises:
            NotAuthenticated: If no actor is bound
        """
        actor = self.identity.require()
        inbox = Inbox(consumer=consumer, capacity=self.config.seen_capacity, accept=relevant_to(actor))
        inbox.on_close(self.channel.on_receive(inbox.deliver))
        inbox.on_close(lambda: self._forget(inbox))
        self._inboxes.append(inbox)

        replayed = await asyncio.to_thread(self._replay, inbox)
        logger.info("Subscribed %s; replayed %d stored messages", actor.id, replayed)
        return inbox

    def resync(self, inbox: Inbox) -> int:
        """
        Replay persisted messages into ``inbox``.

        Returns:
            Number of messages newly accepted
        """
        return self._replay(inbox)

    def _replay(self, inbox: Inbox) -> int:
        if inbox.closed:
            return 0
        messages = [Message.from_record(r) for r in self.store.list(Collection.MESSAGES)]
        # sorted() is stable, so store order settles timestamp ties
        messages.sort(key=lambda m: m.created_at)
        return sum(1 for m in messages if inbox.deliver(m))

    def start_polling(self, interval: Optional[float] = None) -> None:
        """Start the fallback loop that resyncs every open inbox."""
        interval = interval or self.config.replay_poll_interval
        if not interval or (self._poll_task and not self._poll_task.done()):
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop(interval))

    def stop_polling(self) -> None:
        if self._poll_task:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self, interval: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                for inbox in self.inboxes:
                    accepted = await asyncio.to_thread(self._replay, inbox)
                    if accepted:
                        logger.debug("Fallback replay accepted %d messages", accepted)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Fallback replay failed: %s", e)

    def close_inboxes(self) -> None:
        """Close every inbox handed out so far."""
        for inbox in list(self._inboxes):
            inbox.close()

    async def close(self) -> None:
        self.stop_polling()
        self.close_inboxes()
