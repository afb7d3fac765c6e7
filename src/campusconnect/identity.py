"""
Session Identity

Holds the authenticated actor for one running client instance. Reads are
atomic snapshots: callers capture the actor once with ``require()`` or
``current()`` at the start of an operation and use that value throughout,
so a concurrent logout never changes who an in-flight operation acts as.
"""

import logging
import threading
from typing import Callable, List, Optional

from .core.models import Actor
from .errors import NotAuthenticated

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[Actor], Optional[Actor]], None]


class SessionIdentity:
    """At most one bound actor, guarded by a lock."""

    def __init__(self, actor: Optional[Actor] = None):
        self._actor = actor
        self._lock = threading.Lock()
        self._listeners: List[IdentityListener] = []

    def current(self) -> Optional[Actor]:
        """Snapshot of the bound actor, or None."""
        with self._lock:
            return self._actor

    def require(self) -> Actor:
        """
        Snapshot of the bound actor.

        Raises:
            NotAuthenticated: If no actor is bound
        """
        actor = self.current()
        if actor is None:
            raise NotAuthenticated()
        return actor

    @property
    def is_authenticated(self) -> bool:
        return self.current() is not None

    def bind(self, actor: Actor) -> None:
        """Bind ``actor`` after a successful credential check."""
        with self._lock:
            previous, self._actor = self._actor, actor
        logger.info("Session bound to %s (%s)", actor.id, actor.role.value)
        self._emit(previous, actor)

    def unbind(self) -> Optional[Actor]:
        """Drop the bound actor (logout). Returns the actor that was bound."""
        with self._lock:
            previous, self._actor = self._actor, None
        if previous is not None:
            logger.info("Session unbound from %s", previous.id)
            self._emit(previous, None)
        return previous

    def on_change(self, listener: IdentityListener) -> Callable[[], None]:
        """
        Observe bind/unbind as ``listener(previous, current)``.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, previous: Optional[Actor], current: Optional[Actor]) -> None:
        for listener in list(self._listeners):
            try:
                listener(previous, current)
            except Exception:
                logger.exception("Identity listener failed")
