import datetime
import os
import sqlite3
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import CollectionRepository, Database
from errors import ConflictError, ConnectionFailedError, NotFoundError
from models import Invitation, Role, User, Workout
from storage import (
    WORKOUTS,
    FallbackPolicy,
    MemoryStore,
    ModelCollection,
    SqlStore,
    TieredStore,
)


def make_user(email: str, role: Role = Role.CLIENT) -> User:
    return User(
        id="",
        name=email.split("@")[0],
        email=email,
        role=role,
        join_date=datetime.datetime(2024, 1, 1, 9, 0),
        password_hash="hash",
    )


def take_offline(store: SqlStore, tmp_path) -> None:
    missing = str(tmp_path / "missing" / "fitness.db")
    for repo in (store.users, store.invitations, store.collections):
        repo._db_path = missing


class TestSqlStore:
    def test_user_roundtrip(self, tmp_path):
        store = SqlStore(str(tmp_path / "fitness.db"))
        created = store.create_user(make_user("ana@example.com"))
        assert created.id == "1"
        fetched = store.find_user_by_email("ANA@example.com")
        assert fetched.id == created.id
        assert fetched.password_hash == "hash"
        assert not fetched.password_changed

        fetched.password_changed = True
        assert store.update_user(fetched)
        assert store.get_user(created.id).password_changed
        assert store.get_user("not-a-number") is None
        assert store.delete_user(created.id)
        assert store.list_users() == []

    def test_duplicate_email(self, tmp_path):
        store = SqlStore(str(tmp_path / "fitness.db"))
        store.create_user(make_user("ana@example.com"))
        with pytest.raises(ConflictError):
            store.create_user(make_user("Ana@Example.com"))

    def test_list_users_by_role(self, tmp_path):
        store = SqlStore(str(tmp_path / "fitness.db"))
        store.create_user(make_user("ana@example.com"))
        store.create_user(make_user("coach@example.com", Role.TRAINER))
        assert [u.email for u in store.list_users("trainer")] == ["coach@example.com"]
        assert len(store.list_users()) == 2

    def test_consume_invitation_is_atomic(self, tmp_path):
        store = SqlStore(str(tmp_path / "fitness.db"))
        store.create_invitation(
            Invitation(code="ABC123", created_at=datetime.datetime(2024, 1, 1))
        )
        user = store.consume_invitation("ABC123", make_user("eve@example.com"))
        assert store.get_user(user.id).email == "eve@example.com"
        assert store.list_invitations() == []
        with pytest.raises(NotFoundError):
            store.consume_invitation("ABC123", make_user("other@example.com"))
        assert store.find_user_by_email("other@example.com") is None

    def test_consume_rolls_back_on_conflict(self, tmp_path):
        store = SqlStore(str(tmp_path / "fitness.db"))
        store.create_user(make_user("eve@example.com"))
        store.create_invitation(
            Invitation(code="ABC123", created_at=datetime.datetime(2024, 1, 1))
        )
        with pytest.raises(ConflictError):
            store.consume_invitation("ABC123", make_user("eve@example.com"))
        assert [i.code for i in store.list_invitations()] == ["ABC123"]

    def test_collections(self, tmp_path):
        store = SqlStore(str(tmp_path / "fitness.db"))
        assert store.get_collection(WORKOUTS) == []
        store.set_collection(WORKOUTS, [{"id": "w1"}])
        store.set_collection(WORKOUTS, [{"id": "w1"}, {"id": "w2"}])
        assert [w["id"] for w in store.get_collection(WORKOUTS)] == ["w1", "w2"]
        assert store.collections.names() == [WORKOUTS]


class TestTieredStore:
    def test_reads_fall_back_to_cache(self, tmp_path):
        primary = SqlStore(str(tmp_path / "fitness.db"))
        store = TieredStore(primary)
        created = store.create_user(make_user("ana@example.com"))
        store.set_collection(WORKOUTS, [{"id": "w1"}])

        take_offline(primary, tmp_path)
        assert store.get_user(created.id).email == "ana@example.com"
        assert store.get_collection(WORKOUTS) == [{"id": "w1"}]

    def test_reads_raise_without_fallback(self, tmp_path):
        primary = SqlStore(str(tmp_path / "fitness.db"))
        store = TieredStore(primary, policy=FallbackPolicy(read_fallback=False))
        take_offline(primary, tmp_path)
        with pytest.raises(ConnectionFailedError):
            store.list_users()

    def test_writes_raise_by_default(self, tmp_path):
        primary = SqlStore(str(tmp_path / "fitness.db"))
        store = TieredStore(primary)
        take_offline(primary, tmp_path)
        with pytest.raises(ConnectionFailedError):
            store.create_user(make_user("ana@example.com"))

    def test_writes_kept_in_cache_when_not_raising(self, tmp_path):
        primary = SqlStore(str(tmp_path / "fitness.db"))
        store = TieredStore(
            primary, policy=FallbackPolicy(raise_on_write_failure=False)
        )
        take_offline(primary, tmp_path)
        created = store.create_user(make_user("ana@example.com"))
        assert store.find_user_by_email("ana@example.com").id == created.id

    def test_domain_errors_are_not_fallbacks(self):
        store = TieredStore(MemoryStore())
        store.create_user(make_user("ana@example.com"))
        with pytest.raises(ConflictError):
            store.create_user(make_user("ana@example.com"))


class TestModelCollection:
    def _workout(self, workout_id: str) -> Workout:
        return Workout(
            id=workout_id,
            name="W",
            date=datetime.datetime(2024, 1, 1, 12, 0),
            user_id="u1",
        )

    def test_persists_and_reloads(self):
        store = MemoryStore()
        items = ModelCollection(store, WORKOUTS, Workout)
        items.append(self._workout("a"))
        items.append(self._workout("b"))
        assert items.remove("a")
        assert not items.remove("a")
        assert [w["id"] for w in store.get_collection(WORKOUTS)] == ["b"]
        other = ModelCollection(store, WORKOUTS, Workout)
        assert [w.id for w in other.all()] == ["b"]

    def test_failed_persist_does_not_roll_back(self, tmp_path):
        primary = SqlStore(str(tmp_path / "fitness.db"))
        items = ModelCollection(TieredStore(primary), WORKOUTS, Workout)
        items.all()
        take_offline(primary, tmp_path)
        with pytest.raises(ConnectionFailedError):
            items.append(self._workout("a"))
        assert [w.id for w in items.all()] == ["a"]

    def test_find_returns_copy(self):
        items = ModelCollection(MemoryStore(), WORKOUTS, Workout)
        items.append(self._workout("a"))
        found = items.find("a")
        found.name = "changed"
        assert items.find("a").name == "W"
        assert items.find("missing") is None


class TestSchemaMigration:
    def test_adds_missing_columns(self, tmp_path):
        db_file = tmp_path / "old.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, email TEXT, join_date TEXT)"
        )
        conn.execute(
            "INSERT INTO users (name, email, join_date) VALUES ('Ana', 'ana@example.com', '2024-01-01T09:00:00')"
        )
        conn.execute("CREATE TABLE users_old (id INTEGER)")
        conn.commit()
        conn.close()

        Database(str(db_file))

        store = SqlStore(str(db_file))
        user = store.find_user_by_email("ana@example.com")
        assert user.role == Role.CLIENT
        assert not user.password_changed
        assert user.stats.total_workouts == 0

        conn = sqlite3.connect(str(db_file))
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='users_old'"
        )
        assert cur.fetchone() is None
        conn.close()

    def test_collection_repository_defaults(self, tmp_path):
        repo = CollectionRepository(str(tmp_path / "fitness.db"))
        assert repo.get("unknown") == []
