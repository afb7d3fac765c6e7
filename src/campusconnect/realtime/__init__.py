"""
Realtime Module

Fan-out channels, per-session inboxes and the distributor that ties them to
the record store.
"""

from .channel import FanoutChannel, InProcessChannel
from .distributor import EventDistributor, conversation, group_messages, relevant_to
from .inbox import Inbox, SeenIds
from .sql_channel import SQLLogChannel

__all__ = [
    "FanoutChannel",
    "InProcessChannel",
    "SQLLogChannel",
    "EventDistributor",
    "Inbox",
    "SeenIds",
    "conversation",
    "group_messages",
    "relevant_to",
]
