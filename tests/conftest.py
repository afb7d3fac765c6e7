"""
Shared fixtures for the Campus Connect test suite.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from campusconnect.app.session import CampusSession
from campusconnect.config import AppConfig, Environment
from campusconnect.core.models import Actor, Message, Role
from campusconnect.identity import SessionIdentity
from campusconnect.persistence.memory import MemoryRecordStore
from campusconnect.realtime.channel import InProcessChannel

EPOCH = datetime(2024, 9, 1, 9, 0, tzinfo=timezone.utc)


def make_message(message_id: str, seconds: int = 0, sender_id: str = "alice",
                 receiver_id=None, content: str = "hello") -> Message:
    """A stamped message ``seconds`` after a fixed epoch."""
    return Message(
        id=message_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        created_at=EPOCH + timedelta(seconds=seconds),
    )


def bound_identity(user_id: str, role: Role = Role.STUDENT) -> SessionIdentity:
    identity = SessionIdentity()
    identity.bind(Actor(id=user_id, role=role))
    return identity


@pytest.fixture
def config():
    return AppConfig.for_environment(Environment.TESTING)


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest_asyncio.fixture
async def channel():
    channel = InProcessChannel()
    await channel.start()
    yield channel
    await channel.close()


@pytest_asyncio.fixture
async def make_session(config, store, channel):
    """Factory for started sessions sharing one store and channel."""
    sessions = []

    async def factory() -> CampusSession:
        session = await CampusSession(store, channel, config).start()
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        await session.close()
