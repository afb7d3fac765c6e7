"""
Event distribution tests: publish/subscribe through a shared channel and
record store, replay, and the failure semantics of publish.
"""

import asyncio

import pytest
from pydantic import ValidationError

from campusconnect.config import DistributionConfig
from campusconnect.core.models import Actor, Collection, MessageDraft, Role
from campusconnect.errors import ChannelError, NotAuthenticated, PersistenceFailure
from campusconnect.identity import SessionIdentity
from campusconnect.persistence.memory import MemoryRecordStore
from campusconnect.realtime.channel import InProcessChannel
from campusconnect.realtime.distributor import EventDistributor, conversation, group_messages

from conftest import bound_identity, make_message


class FailingStore(MemoryRecordStore):
    def create(self, collection, record):
        raise PersistenceFailure("disk full")


class DownChannel(InProcessChannel):
    async def broadcast(self, message):
        raise ChannelError("transport down")


def distributor(user_id, store, channel, role=Role.STUDENT):
    return EventDistributor(bound_identity(user_id, role), store, channel)


class TestPublish:

    @pytest.mark.asyncio
    async def test_publish_stamps_and_persists(self, store, channel):
        alice = distributor("alice", store, channel)

        message = await alice.publish(MessageDraft(content="hi all"))

        assert message.sender_id == "alice"
        assert message.is_group
        assert len(message.id) == 32
        assert message.created_at.tzinfo is not None
        assert store.get(Collection.MESSAGES, message.id)["content"] == "hi all"

    @pytest.mark.asyncio
    async def test_publisher_sees_own_message_exactly_once(self, store, channel):
        alice = distributor("alice", store, channel)
        inbox = await alice.subscribe()

        message = await alice.publish(MessageDraft(content="hello"))
        assert inbox.messages == (message,)

        assert alice.resync(inbox) == 0
        assert inbox.messages == (message,)

    @pytest.mark.asyncio
    async def test_direct_message_reaches_only_its_parties(self, store, channel):
        """A sends to B; C never surfaces it."""
        a = distributor("a", store, channel)
        b = distributor("b", store, channel)
        c = distributor("c", store, channel)
        inbox_a, inbox_b, inbox_c = [await d.subscribe() for d in (a, b, c)]

        message = await a.publish(MessageDraft(receiver_id="b", content="ping"))

        assert [m.id for m in inbox_a.messages] == [message.id]
        assert [m.id for m in inbox_b.messages] == [message.id]
        assert inbox_c.messages == ()

        assert c.resync(inbox_c) == 0

    @pytest.mark.asyncio
    async def test_unauthenticated_publish_is_rejected(self, store, channel):
        anonymous = EventDistributor(SessionIdentity(), store, channel)

        with pytest.raises(NotAuthenticated):
            await anonymous.publish(MessageDraft(content="hello"))
        assert store.list(Collection.MESSAGES) == []

    @pytest.mark.asyncio
    async def test_persistence_failure_broadcasts_nothing(self, channel):
        received = []
        channel.on_receive(received.append)
        alice = distributor("alice", FailingStore(), channel)

        with pytest.raises(PersistenceFailure):
            await alice.publish(MessageDraft(content="lost"))
        assert received == []

    @pytest.mark.asyncio
    async def test_channel_failure_does_not_fail_publish(self, store):
        down = DownChannel()
        alice = EventDistributor(bound_identity("alice"), store, down)

        message = await alice.publish(MessageDraft(content="deferred"))

        assert store.get(Collection.MESSAGES, message.id) is not None
        # a later subscriber catches up from the store
        bob = EventDistributor(bound_identity("bob"), store, down)
        inbox = await bob.subscribe()
        assert [m.id for m in inbox.messages] == [message.id]


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_subscribe_replays_history_in_order(self, store, channel):
        for message in (
            make_message("m2", seconds=20, sender_id="carol", receiver_id="bob"),
            make_message("m1", seconds=10, sender_id="alice"),
            make_message("m3", seconds=30, sender_id="alice", receiver_id="carol"),
        ):
            store.create(Collection.MESSAGES, message.to_record())

        bob = distributor("bob", store, channel)
        inbox = await bob.subscribe()

        assert [m.id for m in inbox.messages] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_subscribe_requires_identity(self, store, channel):
        anonymous = EventDistributor(SessionIdentity(), store, channel)
        with pytest.raises(NotAuthenticated):
            await anonymous.subscribe()
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_redelivered_broadcast_is_suppressed(self, store, channel):
        bob = distributor("bob", store, channel)
        inbox = await bob.subscribe()
        message = make_message("m1", sender_id="alice")

        await channel.broadcast(message)
        await channel.broadcast(message)

        assert inbox.messages == (message,)

    @pytest.mark.asyncio
    async def test_consumer_notified_for_live_messages(self, store, channel):
        snapshots = []
        bob = distributor("bob", store, channel)
        alice = distributor("alice", store, channel)
        await bob.subscribe(snapshots.append)

        await alice.publish(MessageDraft(content="one"))
        await alice.publish(MessageDraft(content="two"))

        assert [[m.content for m in s] for s in snapshots] == [["one"], ["one", "two"]]

    @pytest.mark.asyncio
    async def test_resync_picks_up_missed_messages(self, store, channel):
        bob = distributor("bob", store, channel)
        inbox = await bob.subscribe()

        # written by another process whose broadcast never arrived
        store.create(Collection.MESSAGES, make_message("m9", sender_id="alice").to_record())

        assert bob.resync(inbox) == 1
        assert bob.resync(inbox) == 0
        assert [m.id for m in inbox.messages] == ["m9"]

    @pytest.mark.asyncio
    async def test_resync_past_seen_capacity_is_idempotent(self, store, channel):
        for i in range(6):
            store.create(Collection.MESSAGES, make_message(f"m{i}", seconds=i).to_record())
        bob = EventDistributor(bound_identity("bob"), store, channel, DistributionConfig(seen_capacity=4))

        inbox = await bob.subscribe()
        assert bob.resync(inbox) == 0
        assert bob.resync(inbox) == 0

        assert [m.id for m in inbox.messages] == [f"m{i}" for i in range(6)]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_close_detaches_every_inbox(self, store, channel):
        bob = distributor("bob", store, channel)
        first = await bob.subscribe()
        second = await bob.subscribe()
        assert channel.subscriber_count == 2
        assert bob.inboxes == (first, second)

        await bob.close()
        await bob.close()

        assert first.closed and second.closed
        assert channel.subscriber_count == 0
        assert bob.inboxes == ()

    @pytest.mark.asyncio
    async def test_closed_inbox_is_released(self, store, channel):
        bob = distributor("bob", store, channel)
        first = await bob.subscribe()
        second = await bob.subscribe()

        first.close()

        assert bob.inboxes == (second,)
        assert channel.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_polling_can_start_and_stop(self, store, channel):
        bob = distributor("bob", store, channel)
        bob.start_polling(interval=60)
        assert bob._poll_task is not None
        bob.stop_polling()
        assert bob._poll_task is None

    @pytest.mark.asyncio
    async def test_polling_delivers_what_the_channel_missed(self, store, channel):
        bob = distributor("bob", store, channel)
        inbox = await bob.subscribe()
        bob.start_polling(interval=0.01)
        try:
            # stored by another process; no broadcast reaches this one
            store.create(Collection.MESSAGES, make_message("m1", sender_id="alice").to_record())
            for _ in range(200):
                if inbox.messages:
                    break
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.05)
        finally:
            bob.stop_polling()

        assert [m.id for m in inbox.messages] == ["m1"]


class TestHelpers:

    def test_conversation_and_group_filters(self):
        messages = [
            make_message("m1", 1, sender_id="a", receiver_id="b"),
            make_message("m2", 2, sender_id="b", receiver_id="a"),
            make_message("m3", 3, sender_id="a", receiver_id="c"),
            make_message("m4", 4, sender_id="c"),
        ]

        assert [m.id for m in conversation(messages, "a", "b")] == ["m1", "m2"]
        assert [m.id for m in group_messages(messages)] == ["m4"]

    def test_actor_role_is_immutable(self):
        actor = Actor(id="a", role=Role.STUDENT)
        with pytest.raises(ValidationError):
            actor.role = Role.FACULTY
