"""
Campus Connect Core Module

Domain layer: actors, roles and the records exchanged by the platform.
"""

from .models import (
    Action,
    Actor,
    Attachment,
    CampusEvent,
    Collection,
    Job,
    Message,
    MessageDraft,
    Notice,
    Record,
    ResourceKind,
    Role,
    User,
    new_id,
    utc_now,
)

__all__ = [
    "Action",
    "Actor",
    "Attachment",
    "CampusEvent",
    "Collection",
    "Job",
    "Message",
    "MessageDraft",
    "Notice",
    "Record",
    "ResourceKind",
    "Role",
    "User",
    "new_id",
    "utc_now",
]
