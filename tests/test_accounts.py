"""
Account service tests: registration, login and logout against the memory
record store.
"""

import pytest

from campusconnect.app.accounts import Accounts
from campusconnect.config import SecurityConfig
from campusconnect.core.models import Collection, Role
from campusconnect.errors import AccountError, NotAuthenticated
from campusconnect.identity import SessionIdentity


@pytest.fixture
def accounts(store):
    return Accounts(store, SessionIdentity(), SecurityConfig(password_time_cost=1, password_memory_cost=1024))


class TestRegister:

    def test_register_binds_identity(self, accounts):
        user = accounts.register("Ada", "ada@campus.edu", "s3cret", Role.FACULTY)

        actor = accounts.identity.require()
        assert actor.id == user.id
        assert actor.role is Role.FACULTY
        assert accounts.current_user == user

    def test_password_never_stored_on_user(self, accounts, store):
        user = accounts.register("Ada", "ada@campus.edu", "s3cret", Role.STUDENT)

        record = store.get(Collection.USERS, user.id)
        assert "s3cret" not in str(record)
        assert "hash" not in record

        credential = store.get(Collection.CREDENTIALS, user.id)
        assert credential["hash"].startswith("$argon2id$")
        assert "s3cret" not in credential["hash"]

    def test_duplicate_email_rejected(self, accounts, store):
        accounts.register("Ada", "ada@campus.edu", "s3cret", Role.STUDENT)

        with pytest.raises(AccountError) as exc_info:
            accounts.register("Other", "ada@campus.edu", "pw", Role.ALUMNI)
        assert exc_info.value.reason == "email_in_use"
        assert len(store.list(Collection.USERS)) == 1

    def test_role_accepts_plain_string(self, accounts):
        user = accounts.register("Grace", "grace@campus.edu", "pw", "alumni")
        assert user.role is Role.ALUMNI


class TestLogin:

    def test_login_with_correct_password(self, accounts):
        user = accounts.register("Ada", "ada@campus.edu", "s3cret", Role.STUDENT)
        accounts.logout()
        assert accounts.identity.current() is None

        assert accounts.login("ada@campus.edu", "s3cret") == user
        assert accounts.identity.require().id == user.id

    @pytest.mark.parametrize("email,password", [
        ("ada@campus.edu", "wrong"),
        ("nobody@campus.edu", "s3cret"),
    ])
    def test_bad_credentials_rejected(self, accounts, email, password):
        accounts.register("Ada", "ada@campus.edu", "s3cret", Role.STUDENT)
        accounts.logout()

        with pytest.raises(AccountError) as exc_info:
            accounts.login(email, password)
        assert exc_info.value.reason == "invalid_credentials"
        assert accounts.identity.current() is None

    def test_corrupt_credential_rejected(self, accounts, store):
        user = accounts.register("Ada", "ada@campus.edu", "s3cret", Role.STUDENT)
        accounts.logout()
        store.update(Collection.CREDENTIALS, user.id, {"hash": "not-a-hash"})

        with pytest.raises(AccountError):
            accounts.login("ada@campus.edu", "s3cret")

    def test_login_upgrades_weaker_hash(self, store):
        identity = SessionIdentity()
        weak = Accounts(store, identity, SecurityConfig(password_time_cost=1, password_memory_cost=1024))
        user = weak.register("Ada", "ada@campus.edu", "s3cret", Role.STUDENT)
        old_hash = store.get(Collection.CREDENTIALS, user.id)["hash"]
        weak.logout()

        strong = Accounts(store, identity, SecurityConfig(password_time_cost=2, password_memory_cost=2048))
        strong.login("ada@campus.edu", "s3cret")

        new_hash = store.get(Collection.CREDENTIALS, user.id)["hash"]
        assert new_hash != old_hash
        assert not strong.hasher.check_needs_rehash(new_hash)


class TestDirectoryOfUsers:

    def test_get_and_list_users(self, accounts):
        ada = accounts.register("Ada", "ada@campus.edu", "pw", Role.FACULTY)
        grace = accounts.register("Grace", "grace@campus.edu", "pw", Role.STUDENT)

        assert accounts.get_user(ada.id) == ada
        assert accounts.get_user("missing") is None
        assert [u.id for u in accounts.list_users()] == [ada.id, grace.id]
        assert [u.id for u in accounts.list_users(Role.STUDENT)] == [grace.id]


class TestProfile:

    def test_update_own_name_and_avatar(self, accounts):
        user = accounts.register("Ada", "ada@campus.edu", "pw", Role.STUDENT)

        updated = accounts.update_profile({"name": "Ada L.", "avatar": "/a.png"})

        assert updated.id == user.id
        assert updated.name == "Ada L."
        assert accounts.get_user(user.id).avatar == "/a.png"

    def test_role_and_email_cannot_change(self, accounts):
        accounts.register("Ada", "ada@campus.edu", "pw", Role.STUDENT)

        updated = accounts.update_profile({"role": "faculty", "email": "x@campus.edu"})

        assert updated.role is Role.STUDENT
        assert updated.email == "ada@campus.edu"

    def test_requires_login(self, accounts):
        with pytest.raises(NotAuthenticated):
            accounts.update_profile({"name": "Nobody"})
