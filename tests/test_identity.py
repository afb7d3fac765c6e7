"""
Session identity tests.
"""

import pytest

from campusconnect.core.models import Actor, Role
from campusconnect.errors import NotAuthenticated
from campusconnect.identity import SessionIdentity

ALICE = Actor(id="alice", role=Role.STUDENT)
BOB = Actor(id="bob", role=Role.FACULTY)


class TestSessionIdentity:

    def test_starts_unbound(self):
        identity = SessionIdentity()
        assert identity.current() is None
        assert not identity.is_authenticated
        with pytest.raises(NotAuthenticated):
            identity.require()

    def test_bind_and_unbind(self):
        identity = SessionIdentity()
        identity.bind(ALICE)
        assert identity.require() == ALICE
        assert identity.is_authenticated

        assert identity.unbind() == ALICE
        assert identity.current() is None
        assert identity.unbind() is None

    def test_captured_actor_survives_logout(self):
        """An operation that captured the actor keeps acting as it."""
        identity = SessionIdentity()
        identity.bind(ALICE)

        captured = identity.require()
        identity.unbind()

        assert captured.id == "alice"
        assert identity.current() is None

    def test_listeners_observe_changes(self):
        identity = SessionIdentity()
        changes = []
        remove = identity.on_change(lambda previous, current: changes.append((
            previous.id if previous else None,
            current.id if current else None,
        )))

        identity.bind(ALICE)
        identity.bind(BOB)
        identity.unbind()
        remove()
        remove()
        identity.bind(ALICE)

        assert changes == [(None, "alice"), ("alice", "bob"), ("bob", None)]

    def test_failing_listener_does_not_block_bind(self):
        identity = SessionIdentity()

        def broken(previous, current):
            raise RuntimeError("listener bug")

        identity.on_change(broken)
        identity.bind(ALICE)
        assert identity.current() == ALICE
