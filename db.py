import json
import sqlite3
from contextlib import contextmanager
from typing import List, Optional, Tuple

from errors import INVITATION_NOT_FOUND, NotFoundError


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                    phone TEXT,
                    role TEXT NOT NULL DEFAULT 'client',
                    join_date TEXT NOT NULL,
                    password_hash TEXT,
                    password_changed INTEGER NOT NULL DEFAULT 0,
                    stats TEXT NOT NULL DEFAULT '{}'
                );""",
            [
                "id",
                "name",
                "email",
                "phone",
                "role",
                "join_date",
                "password_hash",
                "password_changed",
                "stats",
            ],
        ),
        "invitations": (
            """CREATE TABLE invitations (
                    code TEXT PRIMARY KEY,
                    name TEXT,
                    email TEXT,
                    created_at TEXT NOT NULL
                );""",
            ["code", "name", "email", "created_at"],
        ),
        "collections": (
            """CREATE TABLE collections (
                    name TEXT PRIMARY KEY,
                    payload TEXT NOT NULL DEFAULT '[]',
                    updated_at TEXT
                );""",
            ["name", "payload", "updated_at"],
        ),
    }

    def __init__(self, db_path: str = "fitness.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "role":
                        return "'client'"
                    if col == "password_changed":
                        return "0"
                    if col == "stats":
                        return "'{}'"
                    if col == "payload":
                        return "'[]'"
                    if col in ("join_date", "created_at"):
                        return "datetime('now')"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def execute_count(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.rowcount

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


UserRow = Tuple[int, str, str, Optional[str], str, str, Optional[str], int, str]

_USER_COLUMNS = (
    "id, name, email, phone, role, join_date, password_hash, password_changed, stats"
)

_INSERT_USER = (
    "INSERT INTO users (name, email, phone, role, join_date, password_hash, password_changed, stats) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?);"
)


class UserRepository(BaseRepository):
    """Repository for client, trainer and admin accounts."""

    def create(
        self,
        name: str,
        email: str,
        phone: str | None,
        role: str,
        join_date: str,
        password_hash: str | None,
        password_changed: bool = False,
        stats: dict | None = None,
    ) -> int:
        return self.execute(
            _INSERT_USER,
            (
                name,
                email,
                phone,
                role,
                join_date,
                password_hash,
                int(password_changed),
                json.dumps(stats or {}),
            ),
        )

    def fetch_all_users(self, role: str | None = None) -> List[UserRow]:
        query = f"SELECT {_USER_COLUMNS} FROM users"
        params: tuple = ()
        if role:
            query += " WHERE role = ?"
            params = (role,)
        query += " ORDER BY id;"
        return self.fetch_all(query, params)

    def fetch_detail(self, user_id: int) -> Optional[UserRow]:
        rows = self.fetch_all(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?;", (user_id,)
        )
        return rows[0] if rows else None

    def fetch_by_email(self, email: str) -> Optional[UserRow]:
        rows = self.fetch_all(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = ? COLLATE NOCASE;",
            (email.strip(),),
        )
        return rows[0] if rows else None

    def update(
        self,
        user_id: int,
        name: str,
        email: str,
        phone: str | None,
        role: str,
        password_hash: str | None,
        password_changed: bool,
        stats: dict,
    ) -> bool:
        return (
            self.execute_count(
                "UPDATE users SET name = ?, email = ?, phone = ?, role = ?, password_hash = ?, "
                "password_changed = ?, stats = ? WHERE id = ?;",
                (
                    name,
                    email,
                    phone,
                    role,
                    password_hash,
                    int(password_changed),
                    json.dumps(stats),
                    user_id,
                ),
            )
            > 0
        )

    def delete(self, user_id: int) -> bool:
        return self.execute_count("DELETE FROM users WHERE id = ?;", (user_id,)) > 0


class InvitationRepository(BaseRepository):
    """Repository for pending client invitations."""

    def create(
        self, code: str, name: str | None, email: str | None, created_at: str
    ) -> None:
        self.execute(
            "INSERT INTO invitations (code, name, email, created_at) VALUES (?, ?, ?, ?);",
            (code, name, email, created_at),
        )

    def fetch_all_invitations(self) -> List[Tuple[str, Optional[str], Optional[str], str]]:
        return self.fetch_all(
            "SELECT code, name, email, created_at FROM invitations ORDER BY created_at DESC;"
        )

    def delete(self, code: str) -> bool:
        return (
            self.execute_count("DELETE FROM invitations WHERE code = ?;", (code,)) > 0
        )

    def consume(
        self,
        code: str,
        name: str,
        email: str,
        phone: str | None,
        role: str,
        join_date: str,
        password_hash: str | None,
    ) -> int:
        """Delete the invitation and create its user in one transaction."""
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM invitations WHERE code = ?;", (code,))
            if cur.rowcount == 0:
                raise NotFoundError(INVITATION_NOT_FOUND)
            cur = conn.execute(
                _INSERT_USER,
                (name, email, phone, role, join_date, password_hash, 0, "{}"),
            )
            return cur.lastrowid


class CollectionRepository(BaseRepository):
    """Stores serialized collections (workouts, plans) under a well-known name."""

    def get(self, name: str) -> list:
        rows = self.fetch_all(
            "SELECT payload FROM collections WHERE name = ?;", (name,)
        )
        if not rows:
            return []
        return json.loads(rows[0][0])

    def set(self, name: str, items: list, updated_at: str | None = None) -> None:
        self.execute(
            "INSERT INTO collections (name, payload, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(name) DO UPDATE SET payload=excluded.payload, updated_at=excluded.updated_at;",
            (name, json.dumps(items), updated_at),
        )

    def names(self) -> List[str]:
        return [row[0] for row in self.fetch_all("SELECT name FROM collections ORDER BY name;")]
