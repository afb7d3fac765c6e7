"""
Application Service Layer

Services the UI talks to:
- accounts: credential checks that bind and unbind the session identity
- directory: authorized CRUD on notices, events and jobs
- session: per-client wiring of identity, distributor and services
- configurator: builds stores, channels and sessions from configuration
"""

from .accounts import Accounts
from .configurator import build_channel, build_store, create_session
from .directory import Directory
from .session import CampusSession

__all__ = [
    'Accounts',
    'CampusSession',
    'Directory',
    'build_channel',
    'build_store',
    'create_session',
]
