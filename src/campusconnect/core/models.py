"""
Domain Models

Pydantic models for the actors and records of the community platform. The
broadcast unit of the realtime layer is ``Message``: it is frozen, its ``id``
is stamped once at publish time and doubles as the deduplication key.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Random 128-bit identifier; collisions are cryptographically negligible."""
    return uuid.uuid4().hex


class Role(str, Enum):
    FACULTY = "faculty"
    STUDENT = "student"
    ALUMNI = "alumni"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PARTICIPATE = "participate"


class ResourceKind(str, Enum):
    NOTICE = "notice"
    EVENT = "event"
    JOB = "job"
    MESSAGE = "message"
    USER = "user"


class Collection(str, Enum):
    """Record store collections."""
    USERS = "users"
    MESSAGES = "messages"
    NOTICES = "notices"
    EVENTS = "events"
    JOBS = "jobs"
    CREDENTIALS = "credentials"


class Actor(BaseModel):
    """The authenticated identity bound to a session. Role never changes."""
    model_config = ConfigDict(frozen=True)

    id: str
    role: Role


class Record(BaseModel):
    """Base for persisted records."""

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        # naive timestamps are taken as UTC so they stay comparable
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, data: Dict[str, Any]):
        return cls.model_validate(data)


class User(Record):
    name: str
    email: str
    role: Role
    avatar: Optional[str] = None

    def as_actor(self) -> Actor:
        return Actor(id=self.id, role=self.role)


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = Field(pattern="^(image|document|pdf)$")
    url: str
    name: str


class MessageDraft(BaseModel):
    """What a client hands to ``publish``; the rest is stamped server side."""
    receiver_id: Optional[str] = None
    content: str
    attachment: Optional[Attachment] = None


class Message(Record):
    """A chat message; ``receiver_id`` of None means a group message."""
    model_config = ConfigDict(frozen=True)

    sender_id: str
    receiver_id: Optional[str] = None
    content: str
    attachment: Optional[Attachment] = None

    @property
    def is_group(self) -> bool:
        return self.receiver_id is None

    def concerns(self, user_id: str) -> bool:
        """True when ``user_id`` sent it, receives it, or it is a group message."""
        return (
            self.receiver_id is None
            or self.sender_id == user_id
            or self.receiver_id == user_id
        )


class Notice(Record):
    title: str
    content: str
    author_id: str
    pinned: bool = False


class CampusEvent(Record):
    """A calendar event (resource kind ``event``), not a broadcast message."""
    title: str
    description: str = ""
    start_date: datetime
    end_date: datetime
    location: str = ""
    author_id: str
    participants: List[str] = Field(default_factory=list)


class Job(Record):
    title: str
    company: str
    description: str = ""
    requirements: List[str] = Field(default_factory=list)
    location: str = ""
    author_id: str
