"""
db.py
SQLite helpers, admin/settings tables and the member document repository.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from errors import MemberNotFound, RepositoryUnavailable
from models import Member

logger = logging.getLogger(__name__)

MEMBERS_COLLECTION = "/artifacts/{app_id}/public/data/policardmed_members"


class Database:
    """One SQLite file; a fresh connection per call."""

    def __init__(self, db_file: Path | str):
        self.db_file = Path(db_file)

    @contextmanager
    def get_conn(self):
        try:
            conn = sqlite3.connect(self.db_file, check_same_thread=False)
        except sqlite3.Error as exc:
            raise RepositoryUnavailable(f"Não foi possível abrir {self.db_file}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryUnavailable(str(exc)) from exc
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()) -> int:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.lastrowid

    def fetch_one(self, sql: str, params: tuple = ()):
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchall()

    def _create_tables(self) -> None:
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS admin_users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )

        # One JSON document per row, grouped by collection path
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                collection TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        self.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")

        # Bumped on every write; subscriptions poll it
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS collection_revisions (
                collection TEXT PRIMARY KEY,
                revision INTEGER NOT NULL
            )
            """
        )

        # Used to force password change on first login
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        row = self.fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
        if row:
            return str(row["value"])
        return default

    def set_setting(self, key: str, value: str) -> None:
        self.execute(
            """
            INSERT INTO app_settings(key, value) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )

    def init_db(self, admin_username: str, default_admin_hash: str) -> None:
        """
        Initialize the database.
        - Create tables
        - Insert the default admin if no admin exists
        - Force password change on first login
        """
        self._create_tables()

        admin = self.fetch_one("SELECT id FROM admin_users LIMIT 1")
        if not admin:
            now = datetime.now(timezone.utc).isoformat(timespec="seconds")
            self.execute(
                "INSERT INTO admin_users(username, password_hash, created_at) VALUES(?,?,?)",
                (admin_username, default_admin_hash, now),
            )
            self.set_setting("force_password_change", "1")
            logger.info("Seeded default admin %s", admin_username)
        elif self.get_setting("force_password_change") is None:
            self.set_setting("force_password_change", "0")

    def is_force_password_change(self) -> bool:
        return self.get_setting("force_password_change") == "1"

    def clear_force_password_change(self) -> None:
        self.set_setting("force_password_change", "0")


class MemberRepository:
    """
    Member documents under a single collection path.

    No operation offers compare-and-swap: callers that read then write get
    last-writer-wins semantics.
    """

    def __init__(self, database: Database, app_id: str):
        self.database = database
        self.collection = MEMBERS_COLLECTION.format(app_id=app_id)

    def _bump_revision(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT INTO collection_revisions(collection, revision) VALUES(?, 1)
            ON CONFLICT(collection) DO UPDATE SET revision = revision + 1
            """,
            (self.collection,),
        )

    def insert(self, doc: dict) -> str:
        member_id = uuid.uuid4().hex
        with self.database.get_conn() as conn:
            conn.execute(
                "INSERT INTO documents(id, collection, data) VALUES(?,?,?)",
                (member_id, self.collection, json.dumps(doc)),
            )
            self._bump_revision(conn)
        return member_id

    def get(self, member_id: str) -> Member | None:
        row = self.database.fetch_one(
            "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
            (self.collection, member_id),
        )
        return _row_to_member(row) if row else None

    def find_by_field(self, field: str, value) -> list[Member]:
        rows = self.database.fetch_all(
            "SELECT id, data FROM documents WHERE collection = ? AND json_extract(data, ?) = ? ORDER BY rowid",
            (self.collection, f"$.{field}", value),
        )
        return [_row_to_member(r) for r in rows]

    def list_all(self) -> list[Member]:
        return self._snapshot()[1]

    def revision(self) -> int:
        row = self.database.fetch_one(
            "SELECT revision FROM collection_revisions WHERE collection = ?",
            (self.collection,),
        )
        return int(row["revision"]) if row else 0

    def _snapshot(self) -> tuple[int, list[Member]]:
        # Revision and rows read on one connection so they describe the same state
        with self.database.get_conn() as conn:
            rev = conn.execute(
                "SELECT revision FROM collection_revisions WHERE collection = ?",
                (self.collection,),
            ).fetchone()
            rows = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? ORDER BY rowid",
                (self.collection,),
            ).fetchall()
        return (int(rev["revision"]) if rev else 0), [_row_to_member(r) for r in rows]

    def patch(self, member_id: str, fields: dict) -> None:
        """Merge top-level document keys into an existing member."""
        with self.database.get_conn() as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (self.collection, member_id),
            ).fetchone()
            if row is None:
                raise MemberNotFound(member_id)
            data = json.loads(row["data"])
            data.update(fields)
            conn.execute(
                "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                (json.dumps(data), self.collection, member_id),
            )
            self._bump_revision(conn)

    def subscribe_all(self, poll_interval: float = 1.0) -> "MemberSubscription":
        return MemberSubscription(self, poll_interval)


class MemberSubscription:
    """
    Live view of the whole member collection.

    Iterating yields full snapshots: the first one immediately, then one per
    remote change. Once cancelled the subscription is finished for good.
    """

    def __init__(self, repository: MemberRepository, poll_interval: float = 1.0):
        self._repository = repository
        self._poll_interval = poll_interval
        self._cancelled = threading.Event()
        self._revision: int | None = None
        self.snapshot: list[Member] = []

    def __iter__(self):
        return self

    def __next__(self) -> list[Member]:
        while not self._cancelled.is_set():
            if self._refresh():
                return self.snapshot
            self._cancelled.wait(self._poll_interval)
        raise StopIteration

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.cancel()

    def _refresh(self) -> bool:
        revision, members = self._repository._snapshot()
        if revision == self._revision:
            return False
        self._revision = revision
        self.snapshot = members
        return True

    def poll(self) -> list[Member]:
        """Non-blocking: return the latest snapshot, refreshing if it changed."""
        if not self._cancelled.is_set():
            self._refresh()
        return self.snapshot

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()


def _row_to_member(row: sqlite3.Row) -> Member:
    return Member.from_document(row["id"], json.loads(row["data"]))
