"""
FastHTML Web Adapter

Exposes a browser session's ``CampusSession`` over HTTP:

- JSON endpoints for accounts, messages, notices, events and jobs
- ``GET /messages/stream``: Server-Sent Events carrying Datastar
  ``datastar-patch-signals`` events with the session's ordered inbox

A browser gets a ``CampusSession`` on register or login; requests without
one are rejected as unauthenticated. Sessions idle past
``security.session_idle_timeout`` are closed.

```python
from campusconnect.adapters.fasthtml import create_app
app = create_app()
serve()
```
"""

import asyncio
import logging
import time
from datetime import datetime
from functools import wraps
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, TypeVar

from datastar_py import SSE_HEADERS
from datastar_py import ServerSentEventGenerator as SSE
from fasthtml.common import FastHTML
from starlette.responses import JSONResponse, StreamingResponse

from ..app.configurator import build_channel, build_store
from ..app.session import CampusSession
from ..config import AppConfig, get_config
from ..core.models import Message, Role, new_id
from ..errors import (
    AccountError, CampusError, NotAuthenticated, PermissionDenied, PersistenceFailure, RecordNotFound,
)
from ..log import configure_logging
from ..persistence.base import RecordStore
from ..realtime.channel import FanoutChannel
from ..realtime.inbox import Inbox

logger = logging.getLogger(__name__)

SESSION_KEY = "campus_sid"

STATUS_BY_ERROR = {
    NotAuthenticated: 401,
    PermissionDenied: 403,
    RecordNotFound: 404,
    AccountError: 400,
    PersistenceFailure: 503,
}

T = TypeVar("T")


def error_response(error: CampusError) -> JSONResponse:
    status = next((code for cls, code in STATUS_BY_ERROR.items() if isinstance(error, cls)), 400)
    return JSONResponse({"error": error.reason, "detail": str(error)}, status_code=status)


def rejects(handler):
    """Turn ``CampusError`` raised by a route into a categorized JSON rejection."""
    @wraps(handler)
    async def wrapper(*args, **kwargs):
        try:
            return await handler(*args, **kwargs)
        except CampusError as e:
            logger.info("Rejected %s: %s", handler.__name__, e.reason)
            return error_response(e)
    return wrapper


def inbox_signals(messages: Tuple[Message, ...]) -> Dict[str, Any]:
    """Datastar signals for an inbox snapshot."""
    return {
        "inbox": {
            "messages": [m.model_dump(mode="json") for m in messages],
            "count": len(messages),
        }
    }


async def inbox_frames(inbox: Inbox, updates: "asyncio.Queue[Tuple[Message, ...]]",
                       heartbeat: float = 15.0,
                       touch: Optional[Callable[[], None]] = None) -> AsyncIterator[str]:
    """
    SSE events for an inbox: the current snapshot first, then one event per
    accepted message, with heartbeat events while idle. ``touch`` runs on
    every event to keep the owning session alive. Closes the inbox when the
    client goes away.
    """
    try:
        yield SSE.patch_signals(inbox_signals(inbox.messages))
        while not inbox.closed:
            if touch is not None:
                touch()
            try:
                snapshot = await asyncio.wait_for(updates.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield SSE.patch_signals({"heartbeat": time.time()})
                continue
            yield SSE.patch_signals(inbox_signals(snapshot))
    finally:
        inbox.close()


class SessionRegistry:
    """
    Maps browser sessions to ``CampusSession`` objects sharing one store and
    channel.

    A ``CampusSession`` is only kept once a sign-in on it succeeds, and is
    closed after ``idle_timeout`` seconds without a request.
    """

    def __init__(self, store: RecordStore, channel: FanoutChannel, config: AppConfig,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.channel = channel
        self.config = config
        self.idle_timeout = config.security.session_idle_timeout
        self.clock = clock
        self._sessions: Dict[str, CampusSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def touch(self, sid: str) -> None:
        if sid in self._sessions:
            self._last_seen[sid] = self.clock()

    async def expire_idle(self) -> int:
        """Close sessions idle past the timeout. Returns how many were closed."""
        if not self.idle_timeout:
            return 0
        cutoff = self.clock() - self.idle_timeout
        idle = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
        for sid in idle:
            await self._drop(sid)
        if idle:
            logger.info("Closed %d idle sessions", len(idle))
        return len(idle)

    async def get(self, sess: dict) -> CampusSession:
        """
        The session bound to this browser.

        Raises:
            NotAuthenticated: If the browser has no live session
        """
        await self.expire_idle()
        sid = sess.get(SESSION_KEY)
        session = self._sessions.get(sid)
        if session is None:
            raise NotAuthenticated()
        self.touch(sid)
        return session

    async def sign_in(self, sess: dict, action: Callable[[CampusSession], T]) -> T:
        """
        Run a register or login ``action`` on this browser's session.

        A browser without a session gets a fresh one, kept only when
        ``action`` succeeds.
        """
        await self.expire_idle()
        session = self._sessions.get(sess.get(SESSION_KEY))
        if session is not None:
            self.touch(sess[SESSION_KEY])
            return action(session)

        session = await CampusSession(self.store, self.channel, self.config).start()
        try:
            result = action(session)
        except CampusError:
            await session.close()
            raise
        sid = new_id()
        sess[SESSION_KEY] = sid
        self._sessions[sid] = session
        self.touch(sid)
        return result

    async def discard(self, sess: dict) -> None:
        await self._drop(sess.pop(SESSION_KEY, None))

    async def _drop(self, sid: Optional[str]) -> None:
        self._last_seen.pop(sid, None)
        session = self._sessions.pop(sid, None)
        if session is not None:
            await session.logout()
            await session.close()

    async def close(self) -> None:
        for session in list(self._sessions.values()):
            await session.close()
        self._sessions.clear()
        self._last_seen.clear()
        await self.channel.close()
        self.store.close()


def _date(value: Any) -> datetime:
    return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))


def _requirements(value: Any) -> List[str]:
    """Form posts send requirements as one comma separated string."""
    if isinstance(value, str):
        return [r.strip() for r in value.split(",") if r.strip()]
    return list(value or [])


def create_app(config: Optional[AppConfig] = None, store: Optional[RecordStore] = None,
               channel: Optional[FanoutChannel] = None) -> FastHTML:
    """
    Build the FastHTML application.

    Args:
        config: Application configuration (defaults to ``get_config()``)
        store: Shared record store (built from config when omitted)
        channel: Shared fan-out channel (built from config when omitted)
    """
    config = config or get_config()
    configure_logging(config.logging)
    registry = SessionRegistry(
        store if store is not None else build_store(config),
        channel if channel is not None else build_channel(config),
        config,
    )
    app = FastHTML(secret_key=config.security.secret_key or "campusconnect-dev-secret",
                   on_shutdown=[registry.close])
    app.state.sessions = registry

    # Accounts

    @app.post("/register")
    @rejects
    async def register(data: dict, sess):
        try:
            role = Role(data.get("role", ""))
        except ValueError:
            raise AccountError("invalid_role", f"Unknown role {data.get('role')!r}")
        user = await registry.sign_in(
            sess, lambda session: session.accounts.register(data["name"], data["email"], data["password"], role)
        )
        return JSONResponse(user.model_dump(mode="json"), status_code=201)

    @app.post("/login")
    @rejects
    async def login(data: dict, sess):
        user = await registry.sign_in(
            sess, lambda session: session.accounts.login(data.get("email", ""), data.get("password", ""))
        )
        return JSONResponse(user.model_dump(mode="json"))

    @app.post("/logout")
    async def logout(sess):
        await registry.discard(sess)
        return JSONResponse({"ok": True})

    @app.patch("/profile")
    @rejects
    async def update_profile(data: dict, sess):
        session = await registry.get(sess)
        return JSONResponse(session.accounts.update_profile(data).model_dump(mode="json"))

    # Messages

    @app.post("/messages")
    @rejects
    async def send_message(data: dict, sess):
        session = await registry.get(sess)
        message = await session.send(data.get("content", ""), receiver_id=data.get("receiver_id") or None)
        return JSONResponse(message.model_dump(mode="json"), status_code=201)

    @app.get("/messages")
    @rejects
    async def list_messages(sess):
        session = await registry.get(sess)
        inbox = await session.inbox()
        return JSONResponse(inbox_signals(inbox.messages)["inbox"])

    @app.get("/messages/stream")
    @rejects
    async def stream_messages(sess):
        session = await registry.get(sess)
        sid = sess[SESSION_KEY]
        loop = asyncio.get_running_loop()
        updates: asyncio.Queue = asyncio.Queue()
        # deliveries may run on worker threads during replay
        inbox = await session.subscribe(lambda snapshot: loop.call_soon_threadsafe(updates.put_nowait, snapshot))
        frames = inbox_frames(inbox, updates, touch=lambda: registry.touch(sid))
        return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)

    # Notices

    @app.post("/notices")
    @rejects
    async def create_notice(data: dict, sess):
        session = await registry.get(sess)
        pinned = str(data.get("pinned", "")).lower() in ("1", "true", "on")
        notice = session.directory.create_notice(data.get("title", ""), data.get("content", ""), pinned)
        return JSONResponse(notice.model_dump(mode="json"), status_code=201)

    @app.get("/notices")
    @rejects
    async def list_notices(sess):
        session = await registry.get(sess)
        return JSONResponse([n.model_dump(mode="json") for n in session.directory.list_notices()])

    @app.delete("/notices/{notice_id}")
    @rejects
    async def delete_notice(sess, notice_id: str):
        session = await registry.get(sess)
        return JSONResponse({"deleted": session.directory.delete_notice(notice_id)})

    # Events

    @app.post("/events")
    @rejects
    async def create_event(data: dict, sess):
        session = await registry.get(sess)
        event = session.directory.create_event(
            data.get("title", ""),
            _date(data["start_date"]),
            _date(data["end_date"]),
            description=data.get("description", ""),
            location=data.get("location", ""),
        )
        return JSONResponse(event.model_dump(mode="json"), status_code=201)

    @app.post("/events/{event_id}/participate")
    @rejects
    async def participate(sess, event_id: str):
        session = await registry.get(sess)
        return JSONResponse(session.directory.participate(event_id).model_dump(mode="json"))

    @app.post("/events/{event_id}/leave")
    @rejects
    async def leave_event(sess, event_id: str):
        session = await registry.get(sess)
        return JSONResponse(session.directory.leave_event(event_id).model_dump(mode="json"))

    # Jobs

    @app.post("/jobs")
    @rejects
    async def create_job(data: dict, sess):
        session = await registry.get(sess)
        job = session.directory.create_job(
            data.get("title", ""),
            data.get("company", ""),
            description=data.get("description", ""),
            requirements=_requirements(data.get("requirements")),
            location=data.get("location", ""),
        )
        return JSONResponse(job.model_dump(mode="json"), status_code=201)

    @app.patch("/jobs/{job_id}")
    @rejects
    async def update_job(data: dict, sess, job_id: str):
        session = await registry.get(sess)
        changes = dict(data)
        if "requirements" in changes:
            changes["requirements"] = _requirements(changes["requirements"])
        return JSONResponse(session.directory.update_job(job_id, changes).model_dump(mode="json"))

    @app.delete("/jobs/{job_id}")
    @rejects
    async def delete_job(sess, job_id: str):
        session = await registry.get(sess)
        return JSONResponse({"deleted": session.directory.delete_job(job_id)})

    return app
