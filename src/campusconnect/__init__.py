"""
Campus Connect - Realtime Messaging and Authorization

Role-aware community platform core: an authorization engine, session
identity, a record store port with memory and SQL backends, and a realtime
layer that turns an at-least-once fan-out channel into a deduplicated,
ordered inbox per session.
"""

from .auth import Decision, authorize, decide, requires_permission
from .config import AppConfig, Environment, get_config, set_config
from .core import (
    Action, Actor, Attachment, CampusEvent, Collection, Job, Message, MessageDraft, Notice,
    ResourceKind, Role, User,
)
from .errors import (
    AccountError, CampusError, ChannelError, NotAuthenticated, PermissionDenied, PersistenceFailure,
    RecordNotFound,
)
from .identity import SessionIdentity
from .log import configure_logging
from .persistence import MemoryRecordStore, RecordStore, SQLRecordStore
from .realtime import EventDistributor, FanoutChannel, Inbox, InProcessChannel, SQLLogChannel
from .app import Accounts, CampusSession, Directory, build_channel, build_store, create_session

__version__ = "0.1.0"

__all__ = [
    # Domain
    'Action',
    'Actor',
    'Attachment',
    'CampusEvent',
    'Collection',
    'Job',
    'Message',
    'MessageDraft',
    'Notice',
    'ResourceKind',
    'Role',
    'User',

    # Authorization and identity
    'Decision',
    'authorize',
    'decide',
    'requires_permission',
    'SessionIdentity',

    # Errors
    'AccountError',
    'CampusError',
    'ChannelError',
    'NotAuthenticated',
    'PermissionDenied',
    'PersistenceFailure',
    'RecordNotFound',

    # Persistence
    'RecordStore',
    'MemoryRecordStore',
    'SQLRecordStore',

    # Realtime
    'EventDistributor',
    'FanoutChannel',
    'Inbox',
    'InProcessChannel',
    'SQLLogChannel',

    # Application services
    'Accounts',
    'CampusSession',
    'Directory',
    'build_channel',
    'build_store',
    'create_session',

    # Configuration
    'AppConfig',
    'Environment',
    'get_config',
    'set_config',
    'configure_logging',
]
