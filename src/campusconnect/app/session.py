"""
Campus Session

One running client instance: an identity, the distributor that publishes
and receives messages under it, and the account and directory services.
The fan-out channel and record store are shared between sessions and are
passed in; nothing here is process-global.
"""

import logging
from typing import Optional

from ..config import AppConfig
from ..core.models import Actor, Attachment, Message, MessageDraft
from ..identity import SessionIdentity
from ..persistence.base import RecordStore
from ..realtime.channel import FanoutChannel
from ..realtime.distributor import EventDistributor
from ..realtime.inbox import Consumer, Inbox
from .accounts import Accounts
from .directory import Directory

logger = logging.getLogger(__name__)


class CampusSession:
    """
    Session wiring and lifecycle.

    ``start()`` starts the channel (idempotent for shared channels) and the
    optional fallback replay loop; ``logout()`` closes every inbox before
    the identity is dropped; ``close()`` tears the session down and closes
    the channel only when this session owns it.
    """

    def __init__(self, store: RecordStore, channel: FanoutChannel, config: Optional[AppConfig] = None,
                 owns_channel: bool = False):
        self.config = config or AppConfig()
        self.store = store
        self.channel = channel
        self.owns_channel = owns_channel

        self.identity = SessionIdentity()
        self.distributor = EventDistributor(self.identity, store, channel, self.config.distribution)
        self.accounts = Accounts(store, self.identity, self.config.security)
        self.directory = Directory(store, self.identity)
        self._inbox: Optional[Inbox] = None
        self.identity.on_change(self._identity_changed)

    @property
    def actor(self) -> Optional[Actor]:
        return self.identity.current()

    def _identity_changed(self, previous: Optional[Actor], current: Optional[Actor]) -> None:
        # inboxes are filtered for one actor and must not outlive it
        if previous is not None and (current is None or current.id != previous.id):
            self.distributor.close_inboxes()
            self._inbox = None

    async def start(self) -> "CampusSession":
        await self.channel.start()
        if self.config.distribution.replay_poll_interval:
            self.distributor.start_polling()
        return self

    async def send(self, content: str, receiver_id: Optional[str] = None,
                   attachment: Optional[Attachment] = None) -> Message:
        draft = MessageDraft(content=content, receiver_id=receiver_id, attachment=attachment)
        return await self.distributor.publish(draft)

    async def subscribe(self, consumer: Optional[Consumer] = None) -> Inbox:
        return await self.distributor.subscribe(consumer)

    async def inbox(self) -> Inbox:
        """The session's default inbox, opened on first use."""
        if self._inbox is None or self._inbox.closed:
            self._inbox = await self.distributor.subscribe()
        return self._inbox

    async def logout(self) -> None:
        self.distributor.close_inboxes()
        self._inbox = None
        self.accounts.logout()

    async def close(self) -> None:
        await self.distributor.close()
        self._inbox = None
        if self.owns_channel:
            await self.channel.close()
        logger.debug("Session closed")
