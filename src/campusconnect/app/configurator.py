"""
Application Configurator

Builds the shared record store and fan-out channel from configuration and
wires sessions to them.
"""

import logging
from typing import Optional

from ..config import AppConfig, get_config
from ..persistence.base import RecordStore
from ..persistence.memory import MemoryRecordStore
from ..persistence.sql import SQLRecordStore
from ..realtime.channel import FanoutChannel, InProcessChannel
from ..realtime.sql_channel import SQLLogChannel
from .session import CampusSession

logger = logging.getLogger(__name__)


def build_store(config: Optional[AppConfig] = None) -> RecordStore:
    """Create the record store named by ``config.persistence.backend``."""
    config = config or get_config()
    backend = config.persistence.backend

    if backend == "memory":
        return MemoryRecordStore()
    if backend == "sql":
        return SQLRecordStore(config.persistence.url, echo=config.persistence.echo)

    raise ValueError(f"Unknown persistence backend: {backend}")


def build_channel(config: Optional[AppConfig] = None) -> FanoutChannel:
    """Create the fan-out channel named by ``config.distribution.channel``."""
    config = config or get_config()
    kind = config.distribution.channel

    if kind == "memory":
        return InProcessChannel()
    if kind == "sql":
        return SQLLogChannel(
            config.channel_url,
            poll_interval=config.distribution.channel_poll_interval,
            echo=config.persistence.echo,
            retention=config.distribution.channel_retention,
        )

    raise ValueError(f"Unknown channel: {kind}")


async def create_session(config: Optional[AppConfig] = None, store: Optional[RecordStore] = None,
                         channel: Optional[FanoutChannel] = None) -> CampusSession:
    """
    Create and start a session.

    A channel built here belongs to the session and is closed with it; a
    channel passed in stays open for the other sessions sharing it.
    """
    config = config or get_config()
    owns_channel = channel is None
    session = CampusSession(
        store if store is not None else build_store(config),
        channel if channel is not None else build_channel(config),
        config,
        owns_channel=owns_channel,
    )
    await session.start()
    logger.info("Session started (store=%s, channel=%s)",
                type(session.store).__name__, type(session.channel).__name__)
    return session
