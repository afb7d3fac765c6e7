"""
Accounts

Registration, login and logout. A successful credential check binds the
user to the session identity; logout unbinds it. Argon2 password hashes
live in their own ``credentials`` collection, never on the user record.
"""

import logging
from typing import Any, Dict, List, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

from ..config import SecurityConfig
from ..core.models import Collection, Role, User
from ..errors import AccountError, NotAuthenticated, PersistenceFailure
from ..identity import SessionIdentity
from ..persistence.base import RecordStore

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "avatar")


class Accounts:
    """Credential checks in front of a ``SessionIdentity``."""

    def __init__(self, store: RecordStore, identity: SessionIdentity,
                 security: Optional[SecurityConfig] = None):
        self.store = store
        self.identity = identity
        self.security = security or SecurityConfig()
        self.hasher = PasswordHasher(
            time_cost=self.security.password_time_cost,
            memory_cost=self.security.password_memory_cost,
        )

    def _find_by_email(self, email: str) -> Optional[User]:
        matches = self.store.list(Collection.USERS, lambda r: r.get("email") == email)
        return User.from_record(matches[0]) if matches else None

    def register(self, name: str, email: str, password: str, role: Role) -> User:
        """
        Create a user and bind it to the session.

        Raises:
            AccountError: ``email_in_use`` if the email is taken
            PersistenceFailure: If the store rejects the write
        """
        if self._find_by_email(email) is not None:
            raise AccountError("email_in_use", f"Email {email} is already in use")

        user = User(name=name, email=email, role=Role(role))
        stored = User.from_record(self.store.create(Collection.USERS, user.to_record()))

        try:
            self.store.create(Collection.CREDENTIALS, {"id": stored.id, "hash": self.hasher.hash(password)})
        except PersistenceFailure:
            # A user without a credential could never log in; undo it
            self.store.delete(Collection.USERS, stored.id)
            raise

        logger.info("Registered %s as %s", stored.id, stored.role.value)
        self.identity.bind(stored.as_actor())
        return stored

    def login(self, email: str, password: str) -> User:
        """
        Check credentials and bind the user to the session.

        Raises:
            AccountError: ``invalid_credentials`` on unknown email or wrong password
        """
        user = self._find_by_email(email)
        credential = self.store.get(Collection.CREDENTIALS, user.id) if user else None
        if user is None or credential is None:
            raise AccountError("invalid_credentials", "Invalid email or password")

        try:
            self.hasher.verify(credential["hash"], password)
        except (VerifyMismatchError, InvalidHashError):
            logger.info("Failed login for %s", user.id)
            raise AccountError("invalid_credentials", "Invalid email or password")

        if self.hasher.check_needs_rehash(credential["hash"]):
            self.store.update(Collection.CREDENTIALS, user.id, {"hash": self.hasher.hash(password)})
            logger.debug("Rehashed credential for %s", user.id)

        self.identity.bind(user.as_actor())
        return user

    def logout(self) -> None:
        self.identity.unbind()

    def update_profile(self, changes: Dict[str, Any]) -> User:
        """
        Edit the signed-in user's own profile.

        Only ``name`` and ``avatar`` can change; role and email are fixed at
        registration.

        Raises:
            NotAuthenticated: If no actor is bound
        """
        actor = self.identity.require()
        allowed = {k: v for k, v in changes.items() if k in PROFILE_FIELDS}
        record = self.store.update(Collection.USERS, actor.id, allowed)
        if record is None:
            raise NotAuthenticated("Signed-in user no longer exists")
        logger.info("Profile of %s updated: %s", actor.id, sorted(allowed))
        return User.from_record(record)

    @property
    def current_user(self) -> Optional[User]:
        actor = self.identity.current()
        return self.get_user(actor.id) if actor else None

    def get_user(self, user_id: str) -> Optional[User]:
        record = self.store.get(Collection.USERS, user_id)
        return User.from_record(record) if record else None

    def list_users(self, role: Optional[Role] = None) -> List[User]:
        users = [User.from_record(r) for r in self.store.list(Collection.USERS)]
        if role is None:
            return users
        return [u for u in users if u.role == Role(role)]
