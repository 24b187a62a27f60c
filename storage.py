"""Persistence boundary used by the services.

``SqlStore`` is the durable primary store, ``MemoryStore`` the process-local
one. ``TieredStore`` combines both according to a ``FallbackPolicy``: reads
fall back to the cache when the primary is unreachable, writes either raise
``ConnectionFailedError`` for the caller to retry or land in the cache only.
"""

from __future__ import annotations

import copy
import datetime
import itertools
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from db import CollectionRepository, InvitationRepository, UserRepository
from errors import (
    CLIENT_EMAIL_EXISTS,
    INVITATION_NOT_FOUND,
    ConflictError,
    ConnectionFailedError,
    NotFoundError,
)
from models import Invitation, User, UserStats

logger = logging.getLogger(__name__)

WORKOUTS = "workouts"
WORKOUT_PLANS = "workoutPlans"

T = TypeVar("T")


class PrimaryStore:
    """Interface every backing store implements."""

    def list_users(self, role: str | None = None) -> list[User]:
        raise NotImplementedError

    def get_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def find_user_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    def create_user(self, user: User) -> User:
        raise NotImplementedError

    def update_user(self, user: User) -> bool:
        raise NotImplementedError

    def delete_user(self, user_id: str) -> bool:
        raise NotImplementedError

    def list_invitations(self) -> list[Invitation]:
        raise NotImplementedError

    def create_invitation(self, invitation: Invitation) -> Invitation:
        raise NotImplementedError

    def delete_invitation(self, code: str) -> bool:
        raise NotImplementedError

    def consume_invitation(self, code: str, user: User) -> User:
        raise NotImplementedError

    def get_collection(self, name: str) -> list[dict]:
        raise NotImplementedError

    def set_collection(self, name: str, items: list[dict]) -> None:
        raise NotImplementedError


class MemoryStore(PrimaryStore):
    """Non-durable process-local store, also used as the read cache."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[str, User] = {}
        self._invitations: dict[str, Invitation] = {}
        self._collections: dict[str, list[dict]] = {}
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        while True:
            candidate = str(next(self._ids))
            if candidate not in self._users:
                return candidate

    def list_users(self, role: str | None = None) -> list[User]:
        with self._lock:
            return [
                u.model_copy(deep=True)
                for u in self._users.values()
                if role is None or u.role.value == role
            ]

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(str(user_id))
            return user.model_copy(deep=True) if user else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.email.lower() == wanted:
                    return user.model_copy(deep=True)
        return None

    def create_user(self, user: User) -> User:
        with self._lock:
            if self.find_user_by_email(user.email) is not None:
                raise ConflictError(CLIENT_EMAIL_EXISTS)
            stored = user.model_copy(deep=True, update={"id": self._next_id()})
            stored.starter_password = None
            self._users[stored.id] = stored
            return stored.model_copy(deep=True)

    def put_user(self, user: User) -> None:
        with self._lock:
            stored = user.model_copy(deep=True)
            stored.starter_password = None
            self._users[stored.id] = stored

    def replace_users(self, users: list[User]) -> None:
        with self._lock:
            self._users = {}
            for user in users:
                self.put_user(user)

    def update_user(self, user: User) -> bool:
        with self._lock:
            if user.id not in self._users:
                return False
            self.put_user(user)
            return True

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            return self._users.pop(str(user_id), None) is not None

    def list_invitations(self) -> list[Invitation]:
        with self._lock:
            items = [i.model_copy() for i in self._invitations.values()]
        return sorted(items, key=lambda i: i.created_at, reverse=True)

    def create_invitation(self, invitation: Invitation) -> Invitation:
        with self._lock:
            if invitation.code in self._invitations:
                raise ConflictError("INVITATION_EXISTS")
            self._invitations[invitation.code] = invitation.model_copy()
            return invitation

    def replace_invitations(self, invitations: list[Invitation]) -> None:
        with self._lock:
            self._invitations = {i.code: i.model_copy() for i in invitations}

    def delete_invitation(self, code: str) -> bool:
        with self._lock:
            return self._invitations.pop(code, None) is not None

    def consume_invitation(self, code: str, user: User) -> User:
        with self._lock:
            if code not in self._invitations:
                raise NotFoundError(INVITATION_NOT_FOUND)
            created = self.create_user(user)
            del self._invitations[code]
            return created

    def get_collection(self, name: str) -> list[dict]:
        with self._lock:
            return copy.deepcopy(self._collections.get(name, []))

    def set_collection(self, name: str, items: list[dict]) -> None:
        with self._lock:
            self._collections[name] = copy.deepcopy(items)


class SqlStore(PrimaryStore):
    """Durable store backed by the SQLite repositories."""

    def __init__(self, db_path: str = "fitness.db") -> None:
        self.users = UserRepository(db_path)
        self.invitations = InvitationRepository(db_path)
        self.collections = CollectionRepository(db_path)

    @staticmethod
    def _user_from_row(row) -> User:
        uid, name, email, phone, role, join_date, pw_hash, changed, stats = row
        return User(
            id=str(uid),
            name=name,
            email=email,
            phone=phone,
            role=role,
            join_date=datetime.datetime.fromisoformat(join_date),
            password_hash=pw_hash,
            password_changed=bool(changed),
            stats=UserStats(**json.loads(stats or "{}")),
        )

    @staticmethod
    def _row_id(user_id: str) -> int | None:
        try:
            return int(user_id)
        except (TypeError, ValueError):
            return None

    def list_users(self, role: str | None = None) -> list[User]:
        return [self._user_from_row(r) for r in self.users.fetch_all_users(role)]

    def get_user(self, user_id: str) -> Optional[User]:
        row_id = self._row_id(user_id)
        if row_id is None:
            return None
        row = self.users.fetch_detail(row_id)
        return self._user_from_row(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        row = self.users.fetch_by_email(email)
        return self._user_from_row(row) if row else None

    def create_user(self, user: User) -> User:
        try:
            uid = self.users.create(
                user.name,
                user.email,
                user.phone,
                user.role.value,
                user.join_date.isoformat(),
                user.password_hash,
                user.password_changed,
                user.stats.model_dump(),
            )
        except sqlite3.IntegrityError:
            raise ConflictError(CLIENT_EMAIL_EXISTS)
        return user.model_copy(deep=True, update={"id": str(uid)})

    def update_user(self, user: User) -> bool:
        row_id = self._row_id(user.id)
        if row_id is None:
            return False
        try:
            return self.users.update(
                row_id,
                user.name,
                user.email,
                user.phone,
                user.role.value,
                user.password_hash,
                user.password_changed,
                user.stats.model_dump(),
            )
        except sqlite3.IntegrityError:
            raise ConflictError(CLIENT_EMAIL_EXISTS)

    def delete_user(self, user_id: str) -> bool:
        row_id = self._row_id(user_id)
        return row_id is not None and self.users.delete(row_id)

    def list_invitations(self) -> list[Invitation]:
        return [
            Invitation(
                code=code,
                name=name,
                email=email,
                created_at=datetime.datetime.fromisoformat(created_at),
            )
            for code, name, email, created_at in self.invitations.fetch_all_invitations()
        ]

    def create_invitation(self, invitation: Invitation) -> Invitation:
        try:
            self.invitations.create(
                invitation.code,
                invitation.name,
                invitation.email,
                invitation.created_at.isoformat(),
            )
        except sqlite3.IntegrityError:
            raise ConflictError("INVITATION_EXISTS")
        return invitation

    def delete_invitation(self, code: str) -> bool:
        return self.invitations.delete(code)

    def consume_invitation(self, code: str, user: User) -> User:
        try:
            uid = self.invitations.consume(
                code,
                user.name,
                user.email,
                user.phone,
                user.role.value,
                user.join_date.isoformat(),
                user.password_hash,
            )
        except sqlite3.IntegrityError:
            raise ConflictError(CLIENT_EMAIL_EXISTS)
        return user.model_copy(deep=True, update={"id": str(uid)})

    def get_collection(self, name: str) -> list[dict]:
        return self.collections.get(name)

    def set_collection(self, name: str, items: list[dict]) -> None:
        self.collections.set(name, items, datetime.datetime.now().isoformat())


@dataclass(frozen=True)
class FallbackPolicy:
    """How ``TieredStore`` reacts when the primary store is unreachable."""

    read_fallback: bool = True
    write_through: bool = True
    raise_on_write_failure: bool = True
    failures: tuple = (sqlite3.Error, OSError)


class TieredStore(PrimaryStore):
    """Primary store with a process-local cache and an explicit fallback policy."""

    def __init__(
        self,
        primary: PrimaryStore,
        cache: MemoryStore | None = None,
        policy: FallbackPolicy | None = None,
    ) -> None:
        self.primary = primary
        self.cache = cache or MemoryStore()
        self.policy = policy or FallbackPolicy()

    def _read(self, op: str, primary: Callable[[], T], cached: Callable[[], T], refresh=None) -> T:
        try:
            result = primary()
        except self.policy.failures as e:
            if not self.policy.read_fallback:
                raise ConnectionFailedError(message=f"{op}: {e}")
            logger.warning("%s failed on primary store, reading cache: %s", op, e)
            return cached()
        if refresh is not None and self.policy.write_through:
            refresh(result)
        return result

    def _write(self, op: str, primary: Callable[[], T], fallback: Callable[[], T], mirror=None) -> T:
        try:
            result = primary()
        except self.policy.failures as e:
            if self.policy.raise_on_write_failure:
                raise ConnectionFailedError(message=f"{op}: {e}")
            logger.warning("%s failed on primary store, kept in cache only: %s", op, e)
            return fallback()
        if mirror is not None and self.policy.write_through:
            mirror(result)
        return result

    def list_users(self, role: str | None = None) -> list[User]:
        def refresh(users: list[User]) -> None:
            if role is None:
                self.cache.replace_users(users)

        return self._read(
            "list_users",
            lambda: self.primary.list_users(role),
            lambda: self.cache.list_users(role),
            refresh,
        )

    def get_user(self, user_id: str) -> Optional[User]:
        return self._read(
            "get_user",
            lambda: self.primary.get_user(user_id),
            lambda: self.cache.get_user(user_id),
            lambda u: u is not None and self.cache.put_user(u),
        )

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self._read(
            "find_user_by_email",
            lambda: self.primary.find_user_by_email(email),
            lambda: self.cache.find_user_by_email(email),
            lambda u: u is not None and self.cache.put_user(u),
        )

    def create_user(self, user: User) -> User:
        return self._write(
            "create_user",
            lambda: self.primary.create_user(user),
            lambda: self.cache.create_user(user),
            self.cache.put_user,
        )

    def update_user(self, user: User) -> bool:
        return self._write(
            "update_user",
            lambda: self.primary.update_user(user),
            lambda: self.cache.update_user(user),
            lambda ok: ok and self.cache.put_user(user),
        )

    def delete_user(self, user_id: str) -> bool:
        return self._write(
            "delete_user",
            lambda: self.primary.delete_user(user_id),
            lambda: self.cache.delete_user(user_id),
            lambda _ok: self.cache.delete_user(user_id),
        )

    def list_invitations(self) -> list[Invitation]:
        return self._read(
            "list_invitations",
            self.primary.list_invitations,
            self.cache.list_invitations,
            self.cache.replace_invitations,
        )

    def create_invitation(self, invitation: Invitation) -> Invitation:
        def mirror(inv: Invitation) -> None:
            self.cache.delete_invitation(inv.code)
            self.cache.create_invitation(inv)

        return self._write(
            "create_invitation",
            lambda: self.primary.create_invitation(invitation),
            lambda: self.cache.create_invitation(invitation),
            mirror,
        )

    def delete_invitation(self, code: str) -> bool:
        return self._write(
            "delete_invitation",
            lambda: self.primary.delete_invitation(code),
            lambda: self.cache.delete_invitation(code),
            lambda _ok: self.cache.delete_invitation(code),
        )

    def consume_invitation(self, code: str, user: User) -> User:
        def mirror(created: User) -> None:
            self.cache.delete_invitation(code)
            self.cache.put_user(created)

        return self._write(
            "consume_invitation",
            lambda: self.primary.consume_invitation(code, user),
            lambda: self.cache.consume_invitation(code, user),
            mirror,
        )

    def get_collection(self, name: str) -> list[dict]:
        return self._read(
            f"get_collection[{name}]",
            lambda: self.primary.get_collection(name),
            lambda: self.cache.get_collection(name),
            lambda items: self.cache.set_collection(name, items),
        )

    def set_collection(self, name: str, items: list[dict]) -> None:
        self._write(
            f"set_collection[{name}]",
            lambda: self.primary.set_collection(name, items),
            lambda: self.cache.set_collection(name, items),
            lambda _r: self.cache.set_collection(name, items),
        )


class ModelCollection:
    """In-memory list of models mirrored to a named store collection.

    Mutations apply to memory first and are then persisted; a failed persist
    raises ``ConnectionFailedError`` without rolling the memory state back.
    """

    def __init__(self, store: PrimaryStore, name: str, model) -> None:
        self.store = store
        self.name = name
        self.model = model
        self._items: list | None = None
        self._lock = threading.RLock()

    def _loaded(self) -> list:
        if self._items is None:
            self._items = [
                self.model.model_validate(item)
                for item in self.store.get_collection(self.name)
            ]
        return self._items

    def all(self) -> list:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._loaded()]

    def find(self, item_id: str):
        with self._lock:
            for item in self._loaded():
                if item.id == item_id:
                    return item.model_copy(deep=True)
        return None

    def append(self, item) -> None:
        with self._lock:
            self._loaded().append(item.model_copy(deep=True))
            self._persist()

    def replace(self, item) -> bool:
        with self._lock:
            items = self._loaded()
            for index, existing in enumerate(items):
                if existing.id == item.id:
                    items[index] = item.model_copy(deep=True)
                    self._persist()
                    return True
        return False

    def remove(self, item_id: str) -> bool:
        with self._lock:
            items = self._loaded()
            for index, existing in enumerate(items):
                if existing.id == item_id:
                    del items[index]
                    self._persist()
                    return True
        return False

    def reload(self) -> None:
        with self._lock:
            self._items = None

    def _persist(self) -> None:
        self.store.set_collection(
            self.name, [item.model_dump(mode="json") for item in self._items]
        )
