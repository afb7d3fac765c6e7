"""
Shared-log channel tests: two channel instances on one database file stand
in for two OS processes.
"""

import asyncio

import pytest
import pytest_asyncio
from sqlmodel import Session, select

from campusconnect.core.models import Collection, MessageDraft
from campusconnect.persistence.sql import SQLRecordStore
from campusconnect.realtime.distributor import EventDistributor
from campusconnect.realtime.sql_channel import BroadcastRow, SQLLogChannel

from conftest import bound_identity, make_message


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'shared.db'}"


@pytest_asyncio.fixture
async def channels(db_url):
    """Two channels tailing the same log, polled by hand."""
    first = SQLLogChannel(db_url, poll_interval=60)
    second = SQLLogChannel(db_url, poll_interval=60)
    yield first, second
    await first.close()
    await second.close()


class TestSQLLogChannel:

    @pytest.mark.asyncio
    async def test_broadcast_reaches_every_instance(self, channels):
        first, second = channels
        got_first, got_second = [], []
        first.on_receive(got_first.append)
        second.on_receive(got_second.append)
        await first.poll_once()
        await second.poll_once()

        message = make_message("m1")
        await first.broadcast(message)

        assert got_first == []
        assert await first.poll_once() == 1
        assert await second.poll_once() == 1
        assert [m.id for m in got_first] == ["m1"]
        assert [m.id for m in got_second] == ["m1"]
        assert got_second[0].created_at == message.created_at

        assert await second.poll_once() == 0

    @pytest.mark.asyncio
    async def test_starts_at_current_tail(self, channels, db_url):
        first, _ = channels
        await first.broadcast(make_message("old"))

        late = SQLLogChannel(db_url, poll_interval=60)
        received = []
        late.on_receive(received.append)
        try:
            assert await late.poll_once() == 0
            await first.broadcast(make_message("new"))
            await late.poll_once()
        finally:
            await late.close()

        assert [m.id for m in received] == ["new"]

    @pytest.mark.asyncio
    async def test_start_and_close_manage_poll_task(self, channels):
        first, _ = channels
        await first.start()
        assert first.running
        await first.close()
        assert not first.running
        assert first.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unreadable_row_is_skipped(self, channels):
        first, _ = channels
        received = []
        first.on_receive(received.append)
        await first.poll_once()

        with Session(first.engine) as session:
            session.add(BroadcastRow(message_id="bad", payload="{not json"))
            session.commit()
        await first.broadcast(make_message("good"))

        assert await first.poll_once() == 1
        assert [m.id for m in received] == ["good"]

    @pytest.mark.asyncio
    async def test_tailing_survives_unreadable_row(self, db_url):
        channel = SQLLogChannel(db_url, poll_interval=0.01)
        received = []
        channel.on_receive(received.append)
        await channel.start()
        try:
            with Session(channel.engine) as session:
                session.add(BroadcastRow(message_id="bad", payload="{not json"))
                session.commit()
            await channel.broadcast(make_message("good"))
            for _ in range(200):
                if received:
                    break
                await asyncio.sleep(0.01)
            assert channel.running
        finally:
            await channel.close()

        assert [m.id for m in received] == ["good"]

    @pytest.mark.asyncio
    async def test_prune_drops_rows_past_retention(self, db_url):
        channel = SQLLogChannel(db_url, poll_interval=60, retention=60)
        try:
            with Session(channel.engine) as session:
                session.add(BroadcastRow(message_id="stale", payload="{}",
                                         appended_at="2000-01-01T00:00:00+00:00"))
                session.commit()
            await channel.broadcast(make_message("fresh"))

            assert await channel.prune() == 1
            assert await channel.prune() == 0

            with Session(channel.engine) as session:
                left = session.exec(select(BroadcastRow.message_id)).all()
            assert list(left) == ["fresh"]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_prune_disabled_without_retention(self, db_url):
        channel = SQLLogChannel(db_url, poll_interval=60, retention=None)
        try:
            with Session(channel.engine) as session:
                session.add(BroadcastRow(message_id="stale", payload="{}",
                                         appended_at="2000-01-01T00:00:00+00:00"))
                session.commit()
            assert await channel.prune() == 0
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_distributors_sharing_only_the_database(self, db_url):
        """Publisher and receiver each have their own channel and engine."""
        store = SQLRecordStore(db_url)
        alice_channel = SQLLogChannel(db_url, poll_interval=60)
        bob_channel = SQLLogChannel(db_url, poll_interval=60)
        await alice_channel.poll_once()
        await bob_channel.poll_once()

        alice = EventDistributor(bound_identity("alice"), store, alice_channel)
        bob = EventDistributor(bound_identity("bob"), store, bob_channel)
        alice_inbox = await alice.subscribe()
        bob_inbox = await bob.subscribe()

        message = await alice.publish(MessageDraft(receiver_id="bob", content="over the wire"))
        assert store.get(Collection.MESSAGES, message.id) is not None

        await alice_channel.poll_once()
        await bob_channel.poll_once()

        assert [m.id for m in alice_inbox.messages] == [message.id]
        assert [m.id for m in bob_inbox.messages] == [message.id]
        assert bob_inbox.messages[0].content == "over the wire"

        await alice_channel.close()
        await bob_channel.close()
        store.close()
