"""
Directory

Notice, event and job records behind the authorization engine. Every
method is gated by ``requires_permission``: a denied call raises
``PermissionDenied`` before anything touches the store.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..auth import requires_permission
from ..core.models import Action, Actor, CampusEvent, Collection, Job, Notice, ResourceKind
from ..errors import RecordNotFound
from ..identity import SessionIdentity
from ..persistence.base import RecordStore

logger = logging.getLogger(__name__)


def _loader(collection: Collection, key: str):
    """Build a ``load`` hook that fetches the record named by ``key`` or raises."""
    def load(self: "Directory", *args, **kwargs) -> Dict[str, Any]:
        record_id = kwargs[key] if key in kwargs else args[0]
        return self._require(collection, record_id)
    return load


class Directory:
    """Authorized CRUD over the non-realtime collections."""

    def __init__(self, store: RecordStore, identity: SessionIdentity):
        self.store = store
        self.identity = identity

    def _require(self, collection: Collection, record_id: str) -> Dict[str, Any]:
        record = self.store.get(collection, record_id)
        if record is None:
            raise RecordNotFound(collection.value, record_id)
        return record

    def _update(self, collection: Collection, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        record = self.store.update(collection, record_id, changes)
        if record is None:
            raise RecordNotFound(collection.value, record_id)
        return record

    # Notices

    @requires_permission(Action.CREATE, ResourceKind.NOTICE)
    def create_notice(self, title: str, content: str, pinned: bool = False, *, actor: Actor) -> Notice:
        notice = Notice(title=title, content=content, pinned=pinned, author_id=actor.id)
        stored = Notice.from_record(self.store.create(Collection.NOTICES, notice.to_record()))
        logger.info("Notice %s created by %s", stored.id, actor.id)
        return stored

    @requires_permission(Action.UPDATE, ResourceKind.NOTICE, load=_loader(Collection.NOTICES, "notice_id"))
    def update_notice(self, notice_id: str, changes: Dict[str, Any], *, actor: Actor) -> Notice:
        allowed = {k: v for k, v in changes.items() if k in ("title", "content", "pinned")}
        return Notice.from_record(self._update(Collection.NOTICES, notice_id, allowed))

    @requires_permission(Action.DELETE, ResourceKind.NOTICE, load=_loader(Collection.NOTICES, "notice_id"))
    def delete_notice(self, notice_id: str, *, actor: Actor) -> bool:
        logger.info("Notice %s deleted by %s", notice_id, actor.id)
        return self.store.delete(Collection.NOTICES, notice_id)

    @requires_permission(Action.READ, ResourceKind.NOTICE)
    def list_notices(self, *, actor: Actor) -> List[Notice]:
        """Pinned notices first, newest first within each group."""
        notices = [Notice.from_record(r) for r in self.store.list(Collection.NOTICES)]
        notices.sort(key=lambda n: n.created_at, reverse=True)
        notices.sort(key=lambda n: not n.pinned)
        return notices

    # Events

    @requires_permission(Action.CREATE, ResourceKind.EVENT)
    def create_event(self, title: str, start_date: datetime, end_date: datetime,
                     description: str = "", location: str = "", *, actor: Actor) -> CampusEvent:
        event = CampusEvent(
            title=title,
            description=description,
            start_date=start_date,
            end_date=end_date,
            location=location,
            author_id=actor.id,
        )
        stored = CampusEvent.from_record(self.store.create(Collection.EVENTS, event.to_record()))
        logger.info("Event %s created by %s", stored.id, actor.id)
        return stored

    @requires_permission(Action.UPDATE, ResourceKind.EVENT, load=_loader(Collection.EVENTS, "event_id"))
    def update_event(self, event_id: str, changes: Dict[str, Any], *, actor: Actor) -> CampusEvent:
        fields = ("title", "description", "start_date", "end_date", "location")
        allowed = {k: v for k, v in changes.items() if k in fields}
        # validate through the model so dates are stored in their JSON form
        merged = CampusEvent.from_record({**self._require(Collection.EVENTS, event_id), **allowed}).to_record()
        patch = {k: merged[k] for k in allowed}
        return CampusEvent.from_record(self._update(Collection.EVENTS, event_id, patch))

    @requires_permission(Action.DELETE, ResourceKind.EVENT, load=_loader(Collection.EVENTS, "event_id"))
    def delete_event(self, event_id: str, *, actor: Actor) -> bool:
        logger.info("Event %s deleted by %s", event_id, actor.id)
        return self.store.delete(Collection.EVENTS, event_id)

    @requires_permission(Action.PARTICIPATE, ResourceKind.EVENT, load=_loader(Collection.EVENTS, "event_id"))
    def participate(self, event_id: str, *, actor: Actor) -> CampusEvent:
        """Add the actor to the event's participants; joining twice is a no-op."""
        event = CampusEvent.from_record(self._require(Collection.EVENTS, event_id))
        if actor.id in event.participants:
            return event
        participants = event.participants + [actor.id]
        logger.info("%s joined event %s", actor.id, event_id)
        return CampusEvent.from_record(self._update(Collection.EVENTS, event_id, {"participants": participants}))

    @requires_permission(Action.PARTICIPATE, ResourceKind.EVENT, load=_loader(Collection.EVENTS, "event_id"))
    def leave_event(self, event_id: str, *, actor: Actor) -> CampusEvent:
        """Remove the actor from the event's participants; leaving twice is a no-op."""
        event = CampusEvent.from_record(self._require(Collection.EVENTS, event_id))
        if actor.id not in event.participants:
            return event
        participants = [p for p in event.participants if p != actor.id]
        logger.info("%s left event %s", actor.id, event_id)
        return CampusEvent.from_record(self._update(Collection.EVENTS, event_id, {"participants": participants}))

    @requires_permission(Action.READ, ResourceKind.EVENT)
    def list_events(self, *, actor: Actor) -> List[CampusEvent]:
        events = [CampusEvent.from_record(r) for r in self.store.list(Collection.EVENTS)]
        return sorted(events, key=lambda e: e.start_date)

    # Jobs

    @requires_permission(Action.CREATE, ResourceKind.JOB)
    def create_job(self, title: str, company: str, description: str = "",
                   requirements: Optional[Iterable[str]] = None, location: str = "",
                   *, actor: Actor) -> Job:
        job = Job(
            title=title,
            company=company,
            description=description,
            requirements=list(requirements or []),
            location=location,
            author_id=actor.id,
        )
        stored = Job.from_record(self.store.create(Collection.JOBS, job.to_record()))
        logger.info("Job %s posted by %s", stored.id, actor.id)
        return stored

    @requires_permission(Action.UPDATE, ResourceKind.JOB, load=_loader(Collection.JOBS, "job_id"))
    def update_job(self, job_id: str, changes: Dict[str, Any], *, actor: Actor) -> Job:
        fields = ("title", "company", "description", "requirements", "location")
        allowed = {k: v for k, v in changes.items() if k in fields}
        if "requirements" in allowed:
            allowed["requirements"] = list(allowed["requirements"] or [])
        return Job.from_record(self._update(Collection.JOBS, job_id, allowed))

    @requires_permission(Action.DELETE, ResourceKind.JOB, load=_loader(Collection.JOBS, "job_id"))
    def delete_job(self, job_id: str, *, actor: Actor) -> bool:
        logger.info("Job %s deleted by %s", job_id, actor.id)
        return self.store.delete(Collection.JOBS, job_id)

    @requires_permission(Action.READ, ResourceKind.JOB)
    def list_jobs(self, *, actor: Actor) -> List[Job]:
        jobs = [Job.from_record(r) for r in self.store.list(Collection.JOBS)]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)
