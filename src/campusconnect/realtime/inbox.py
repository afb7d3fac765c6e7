"""
Session Inbox

Turns the at-least-once, unordered fan-out channel into an effectively
exactly-once, locally ordered stream for one session:

- an id already held in the sequence is never accepted again; a bounded
  ``SeenIds`` set remembers recent arrivals
- accepted messages are kept sorted by ``created_at``; equal timestamps keep
  arrival order
- the consumer is called with the whole ordered sequence after every accept
"""

import bisect
import logging
import threading
from collections import OrderedDict
from typing import Callable, List, Optional, Set, Tuple

from ..core.models import Message

logger = logging.getLogger(__name__)

Consumer = Callable[[Tuple[Message, ...]], None]
MessageFilter = Callable[[Message], bool]

DEFAULT_SEEN_CAPACITY = 1000


class SeenIds:
    """
    Insertion-ordered set of message ids with a soft size bound.

    When the set grows past ``capacity`` the oldest half is evicted and the
    most recently seen ``capacity // 2`` ids are kept. ``Inbox`` also checks
    the ids it holds, so eviction never lets a held message in twice.
    """

    def __init__(self, capacity: int = DEFAULT_SEEN_CAPACITY):
        if capacity < 2:
            raise ValueError("capacity must be at least 2")
        self.capacity = capacity
        self._ids: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> bool:
        """Record an id. Returns False if it was already present."""
        if message_id in self._ids:
            return False
        self._ids[message_id] = None
        if len(self._ids) > self.capacity:
            self._evict()
        return True

    def _evict(self) -> None:
        keep = self.capacity // 2
        drop = len(self._ids) - keep
        for _ in range(drop):
            self._ids.popitem(last=False)
        logger.debug("Evicted %d seen ids, %d retained", drop, keep)


class Inbox:
    """
    Deduplicating, ordered delivery record for one subscription.

    All mutation happens under a re-entrant lock, so concurrent broadcasts
    for the same session never race on the seen set or the sequence.
    """

    def __init__(self, consumer: Optional[Consumer] = None, capacity: int = DEFAULT_SEEN_CAPACITY,
                 accept: Optional[MessageFilter] = None):
        self.consumer = consumer
        self.accept = accept
        self._seen = SeenIds(capacity)
        self._messages: List[Message] = []
        self._keys: List = []
        self._held: Set[str] = set()
        self._lock = threading.RLock()
        self._closed = False
        self._on_close: List[Callable[[], None]] = []

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Snapshot of the ordered sequence."""
        with self._lock:
            return tuple(self._messages)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def __len__(self) -> int:
        return len(self._messages)

    def deliver(self, message: Message) -> bool:
        """
        Offer a message to the inbox.

        Returns:
            True if the message was accepted; False when it was filtered
            out, already seen, or the inbox is closed
        """
        with self._lock:
            if self._closed:
                return False
            if self.accept is not None and not self.accept(message):
                return False
            if message.id in self._held or not self._seen.add(message.id):
                logger.debug("Suppressed duplicate message %s", message.id)
                return False

            # bisect_right places a tie after the messages already present
            position = bisect.bisect_right(self._keys, message.created_at)
            self._keys.insert(position, message.created_at)
            self._messages.insert(position, message)
            self._held.add(message.id)
            snapshot = tuple(self._messages)

            if self.consumer is not None:
                try:
                    self.consumer(snapshot)
                except Exception:
                    logger.exception("Inbox consumer failed on message %s", message.id)
            return True

    def on_close(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once when the inbox closes."""
        with self._lock:
            if not self._closed:
                self._on_close.append(callback)
                return
        callback()

    def close(self) -> None:
        """Stop delivery. Safe to call any number of times."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            callbacks, self._on_close = self._on_close, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Inbox close callback failed")

    def __enter__(self) -> "Inbox":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
