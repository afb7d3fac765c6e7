"""
Campus Connect Authorization Engine

A static rule table maps (role, action, resource kind, ownership) to an
allow/deny decision. ``decide`` is a pure, total function: unknown roles,
actions and resource kinds are denied, never raised on.

Service methods are gated with the ``requires_permission`` decorator:

```python
class Directory:
    @requires_permission(Action.DELETE, ResourceKind.JOB, load=lambda self, job_id: self.jobs[job_id])
    def delete_job(self, job_id: str, *, actor: Actor) -> bool: ...
```
"""

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Union

from .core.models import Action, Actor, ResourceKind, Role
from .errors import NotAuthenticated, PermissionDenied

logger = logging.getLogger(__name__)

ANY = "*"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


@dataclass(frozen=True)
class PolicyRule:
    """An allow rule; ``ANY`` matches every action or resource kind."""
    role: str
    action: str = ANY
    resource_kind: str = ANY
    requires_ownership: bool = False

    def matches(self, role: str, action: str, resource_kind: str, is_owner: bool) -> bool:
        if self.role != role:
            return False
        if self.action != ANY and self.action != action:
            return False
        if self.resource_kind != ANY and self.resource_kind != resource_kind:
            return False
        return is_owner or not self.requires_ownership


# Evaluated in order; anything unmatched is denied. Faculty comes first so no
# later clause can narrow it.
POLICY: Tuple[PolicyRule, ...] = (
    PolicyRule(Role.FACULTY.value),
    PolicyRule(Role.ALUMNI.value, Action.CREATE.value, ResourceKind.JOB.value),
    PolicyRule(Role.ALUMNI.value, Action.DELETE.value, ResourceKind.JOB.value, requires_ownership=True),
    PolicyRule(Role.ALUMNI.value, Action.READ.value),
    PolicyRule(Role.STUDENT.value, Action.READ.value),
    PolicyRule(Role.STUDENT.value, Action.PARTICIPATE.value, ResourceKind.EVENT.value),
)


def _token(value: Any) -> Optional[str]:
    if isinstance(value, Enum):
        value = value.value
    return value if isinstance(value, str) else None


def decide(actor: Optional[Actor], action: Union[Action, str], resource_kind: Union[ResourceKind, str],
           is_owner: bool = False) -> Decision:
    """
    Decide whether ``actor`` may perform ``action`` on ``resource_kind``.

    Args:
        actor: Acting identity, or None when nobody is bound
        action: Action name (``create``, ``read``, ``update``, ``delete``, ``participate``)
        resource_kind: Resource kind name (``notice``, ``event``, ``job``, ...)
        is_owner: Whether the actor authored the target resource

    Returns:
        Decision.ALLOW or Decision.DENY
    """
    role = _token(getattr(actor, "role", None))
    action_name = _token(action)
    kind = _token(resource_kind)
    if role is None or action_name is None or kind is None:
        return Decision.DENY

    owner = is_owner is True
    for rule in POLICY:
        if rule.matches(role, action_name, kind, owner):
            return Decision.ALLOW
    return Decision.DENY


def is_owner(actor: Optional[Actor], resource: Any) -> bool:
    """True when the resource's ``author_id`` equals the actor's id."""
    if actor is None or resource is None:
        return False
    if isinstance(resource, dict):
        author_id = resource.get("author_id")
    else:
        author_id = getattr(resource, "author_id", None)
    return author_id is not None and author_id == actor.id


def authorize(actor: Optional[Actor], action: Union[Action, str], resource_kind: Union[ResourceKind, str],
              resource: Any = None) -> None:
    """
    Enforce a decision.

    Raises:
        NotAuthenticated: If no actor is given
        PermissionDenied: If the rule table denies the action
    """
    if actor is None:
        raise NotAuthenticated()

    if not decide(actor, action, resource_kind, is_owner(actor, resource)).allowed:
        logger.info("Denied %s %s for %s (%s)", _token(action), _token(resource_kind), actor.id, actor.role.value)
        raise PermissionDenied(actor.role.value, _token(action), _token(resource_kind))


def requires_permission(action: Union[Action, str], resource_kind: Union[ResourceKind, str],
                        *, load: Optional[Callable[..., Any]] = None):
    """
    Decorator for service methods that mutate records.

    The decorated method's instance must expose ``identity`` (a
    ``SessionIdentity``). The actor is captured once when the call starts and
    handed to the method as the ``actor`` keyword argument, so a logout
    racing with the call cannot switch identity halfway through.

    Args:
        action: Action being performed
        resource_kind: Kind of the target resource
        load: Optional ``load(self, *args, **kwargs)`` returning the target
              resource; its ``author_id`` decides ownership. It is skipped
              when the role is denied even as owner.

    Raises:
        NotAuthenticated: If no actor is bound
        PermissionDenied: If the rule table denies the action
    """
    def decorator(func: Callable) -> Callable:
        def check(self, args, kwargs) -> Actor:
            actor = self.identity.require()
            # the target is only loaded when ownership could still allow the call
            if load is not None and decide(actor, action, resource_kind, is_owner=True).allowed:
                authorize(actor, action, resource_kind, load(self, *args, **kwargs))
            else:
                authorize(actor, action, resource_kind)
            return actor

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(self, *args, **kwargs):
                actor = check(self, args, kwargs)
                return await func(self, *args, actor=actor, **kwargs)
            wrapper = async_wrapper
        else:
            @wraps(func)
            def sync_wrapper(self, *args, **kwargs):
                actor = check(self, args, kwargs)
                return func(self, *args, actor=actor, **kwargs)
            wrapper = sync_wrapper

        # Store the rule on the function for introspection
        wrapper._permission_config = {
            'action': _token(action),
            'resource_kind': _token(resource_kind),
            'ownership_checked': load is not None,
        }
        return wrapper
    return decorator


__all__ = [
    "ANY",
    "Decision",
    "PolicyRule",
    "POLICY",
    "decide",
    "is_owner",
    "authorize",
    "requires_permission",
]
