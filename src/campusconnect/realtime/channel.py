"""
Fan-out Channel

The broadcast primitive of the realtime layer: at-least-once delivery to
every subscriber (the sender included), no ordering and no delivery
deadline. Channels are constructed explicitly and handed to sessions; their
lifecycle is ``start()`` / ``close()``.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Union

from ..core.models import Message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message], Union[None, Awaitable[None]]]


class FanoutChannel(ABC):
    """Abstract base class for fan-out channels."""

    def __init__(self):
        self._handlers: List[MessageHandler] = []

    @abstractmethod
    async def broadcast(self, message: Message) -> None:
        """
        Send a message to every subscriber.

        Raises:
            ChannelError: If the transport cannot accept the message
        """

    async def start(self) -> None:
        """Begin delivering to handlers."""

    async def close(self) -> None:
        """Stop delivering and drop every handler."""
        self._handlers.clear()

    def on_receive(self, handler: MessageHandler) -> Callable[[], None]:
        """
        Subscribe a handler to received messages.

        Args:
            handler: Function or coroutine function taking a ``Message``

        Returns:
            Function that unsubscribes the handler; safe to call repeatedly
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def _dispatch(self, message: Message) -> int:
        """Hand a received message to every handler, isolating failures."""
        handlers = list(self._handlers)
        if not handlers:
            return 0

        async def call(handler: MessageHandler):
            result = handler(message)
            if inspect.isawaitable(result):
                await result

        results = await asyncio.gather(*(call(h) for h in handlers), return_exceptions=True)

        delivered = 0
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error("Channel handler %r failed on message %s: %s", handler, message.id, result)
            else:
                delivered += 1
        return delivered


class InProcessChannel(FanoutChannel):
    """
    In-process channel for single-process deployments and tests.

    Sessions that must reach other OS processes use ``SQLLogChannel``.
    """

    async def broadcast(self, message: Message) -> None:
        delivered = await self._dispatch(message)
        logger.debug("Broadcast %s to %d handlers", message.id, delivered)
