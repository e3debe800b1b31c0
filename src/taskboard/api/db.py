from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Generator, List, Optional, Sequence, Tuple

from .models import MentionEntity, NoteEntity, Priority, TagEntity, TodoEntity, UserEntity
from .repositories import SORT_FIELDS, ListQuery, Repository
from .schemas import NoteCreate, TodoCreate, TodoUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Tables:
    users: str = "users"
    tags: str = "tags"
    todos: str = "todos"
    todo_tags: str = "todo_tags"
    notes: str = "notes"
    mentions: str = "mentions"


_T = _Tables()

_SORT_SQL = {
    "created_at": "t.created_at",
    "title": "t.title",
    "priority": "CASE t.priority WHEN 'HIGH' THEN 0 WHEN 'MEDIUM' THEN 1 ELSE 2 END",
}


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteRepository(Repository):
    """
    Lightweight SQLite repository implementing the Repository interface.

    Every public call runs in its own connection and commits on success, so a
    failure halfway through (for example while replacing mentions) rolls the
    whole call back.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS {_T.users} (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    username TEXT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS {_T.tags} (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE
                );
                CREATE TABLE IF NOT EXISTS {_T.todos} (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    priority TEXT NOT NULL,
                    user_id TEXT NOT NULL REFERENCES {_T.users}(id),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS {_T.todo_tags} (
                    todo_id TEXT NOT NULL REFERENCES {_T.todos}(id) ON DELETE CASCADE,
                    tag_id TEXT NOT NULL REFERENCES {_T.tags}(id),
                    position INTEGER NOT NULL,
                    PRIMARY KEY (todo_id, tag_id)
                );
                CREATE TABLE IF NOT EXISTS {_T.notes} (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    todo_id TEXT NOT NULL REFERENCES {_T.todos}(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL REFERENCES {_T.users}(id),
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS {_T.mentions} (
                    todo_id TEXT NOT NULL REFERENCES {_T.todos}(id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL REFERENCES {_T.users}(id),
                    PRIMARY KEY (todo_id, user_id)
                );
                CREATE INDEX IF NOT EXISTS idx_todos_user_id ON {_T.todos}(user_id);
                CREATE INDEX IF NOT EXISTS idx_todos_created_at ON {_T.todos}(created_at);
                CREATE INDEX IF NOT EXISTS idx_notes_todo_id ON {_T.notes}(todo_id);
                """
            )

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserEntity:
        return {
            "id": row["id"],
            "name": row["name"],
            "username": row["username"],
            "email": row["email"],
            "password_hash": row["password_hash"],
        }

    def _row_to_todo(self, conn: sqlite3.Connection, row: sqlite3.Row) -> TodoEntity:
        tag_rows = conn.execute(
            f"SELECT tag_id FROM {_T.todo_tags} WHERE todo_id = ? ORDER BY position", (row["id"],)
        ).fetchall()
        return {
            "id": row["id"],
            "title": row["title"],
            "description": row["description"] or "",
            "priority": Priority(row["priority"]),
            "user_id": row["user_id"],
            "tag_ids": [r["tag_id"] for r in tag_rows],
            "created_at": datetime.fromisoformat(row["created_at"]),
            "updated_at": datetime.fromisoformat(row["updated_at"]),
        }

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> NoteEntity:
        return {
            "id": row["id"],
            "content": row["content"],
            "todo_id": row["todo_id"],
            "user_id": row["user_id"],
            "created_at": datetime.fromisoformat(row["created_at"]),
        }

    # users

    def create_user(self, name: str, username: Optional[str], email: str, password_hash: str) -> UserEntity:
        user_id = uuid.uuid4().hex
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO {_T.users} (id, name, username, email, password_hash) VALUES (?, ?, ?, ?, ?)",
                (user_id, name, username, email, password_hash),
            )
            row = conn.execute(f"SELECT * FROM {_T.users} WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row)

    def get_user(self, user_id: str) -> Optional[UserEntity]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_T.users} WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None

    def get_user_by_login(self, login: str) -> Optional[UserEntity]:
        needle = login.strip()
        with self._conn() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM {_T.users}
                WHERE lower(email) = lower(?) OR lower(username) = lower(?)
                ORDER BY rowid LIMIT 1
                """,
                (needle, needle),
            ).fetchone()
            return self._row_to_user(row) if row else None

    def list_users(self) -> List[UserEntity]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM {_T.users} ORDER BY rowid").fetchall()
            return [self._row_to_user(r) for r in rows]

    def find_users_by_names(self, names: Sequence[str]) -> List[UserEntity]:
        folded = sorted({n.lower() for n in names})
        if not folded:
            return []
        marks = ", ".join("?" for _ in folded)
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_T.users}
                WHERE lower(username) IN ({marks}) OR lower(name) IN ({marks})
                ORDER BY rowid
                """,
                [*folded, *folded],
            ).fetchall()
            return [self._row_to_user(r) for r in rows]

    # tags

    def get_tags(self, tag_ids: Sequence[str]) -> List[TagEntity]:
        if not tag_ids:
            return []
        marks = ", ".join("?" for _ in tag_ids)
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM {_T.tags} WHERE id IN ({marks})", list(tag_ids)).fetchall()
        by_id = {r["id"]: {"id": r["id"], "name": r["name"]} for r in rows}
        return [by_id[t] for t in tag_ids if t in by_id]  # type: ignore[misc]

    def list_tags(self) -> List[TagEntity]:
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM {_T.tags} ORDER BY name").fetchall()
            return [{"id": r["id"], "name": r["name"]} for r in rows]

    def _ensure_tags(self, conn: sqlite3.Connection, names: Sequence[str]) -> List[TagEntity]:
        out: List[TagEntity] = []
        for name in names:
            conn.execute(
                f"INSERT OR IGNORE INTO {_T.tags} (id, name) VALUES (?, ?)", (uuid.uuid4().hex, name)
            )
            row = conn.execute(f"SELECT * FROM {_T.tags} WHERE name = ?", (name,)).fetchone()
            out.append({"id": row["id"], "name": row["name"]})
        return out

    def ensure_tags(self, names: Sequence[str]) -> List[TagEntity]:
        with self._conn() as conn:
            return self._ensure_tags(conn, names)

    def _set_tags(self, conn: sqlite3.Connection, todo_id: str, names: Sequence[str]) -> None:
        conn.execute(f"DELETE FROM {_T.todo_tags} WHERE todo_id = ?", (todo_id,))
        for position, tag in enumerate(self._ensure_tags(conn, names)):
            conn.execute(
                f"INSERT INTO {_T.todo_tags} (todo_id, tag_id, position) VALUES (?, ?, ?)",
                (todo_id, tag["id"], position),
            )

    # todos

    def create_todo(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        todo_id = uuid.uuid4().hex
        now = datetime.now().isoformat()
        with self._conn() as conn:
            conn.execute(
                f"""
                INSERT INTO {_T.todos} (id, title, description, priority, user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (todo_id, data.title, data.description or "", Priority(data.priority).value, owner_id, now, now),
            )
            self._set_tags(conn, todo_id, data.tags or [])
            row = conn.execute(f"SELECT * FROM {_T.todos} WHERE id = ?", (todo_id,)).fetchone()
            return self._row_to_todo(conn, row)

    def get_todo(self, todo_id: str) -> Optional[TodoEntity]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_T.todos} WHERE id = ?", (todo_id,)).fetchone()
            return self._row_to_todo(conn, row) if row else None

    def update_todo(self, todo_id: str, data: TodoUpdate) -> Optional[TodoEntity]:
        fields = data.model_fields_set
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_T.todos} WHERE id = ?", (todo_id,)).fetchone()
            if not row:
                return None

            title = data.title if "title" in fields and data.title is not None else row["title"]
            description = (data.description or "") if "description" in fields else row["description"]
            priority = (
                Priority(data.priority).value if "priority" in fields and data.priority is not None else row["priority"]
            )
            conn.execute(
                f"""
                UPDATE {_T.todos}
                SET title = ?, description = ?, priority = ?, updated_at = ?
                WHERE id = ?
                """,
                (title, description, priority, datetime.now().isoformat(), todo_id),
            )
            if "tags" in fields and data.tags is not None:
                self._set_tags(conn, todo_id, data.tags)
            row2 = conn.execute(f"SELECT * FROM {_T.todos} WHERE id = ?", (todo_id,)).fetchone()
            return self._row_to_todo(conn, row2)

    def delete_todo(self, todo_id: str) -> bool:
        with self._conn() as conn:
            conn.execute(f"DELETE FROM {_T.mentions} WHERE todo_id = ?", (todo_id,))
            conn.execute(f"DELETE FROM {_T.notes} WHERE todo_id = ?", (todo_id,))
            conn.execute(f"DELETE FROM {_T.todo_tags} WHERE todo_id = ?", (todo_id,))
            cur = conn.execute(f"DELETE FROM {_T.todos} WHERE id = ?", (todo_id,))
            return cur.rowcount > 0

    def list_todos(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        clauses = []
        params: list = []

        if q.owner_id is not None:
            clauses.append("t.user_id = ?")
            params.append(q.owner_id)

        if q.tag:
            clauses.append(
                f"""EXISTS (SELECT 1 FROM {_T.todo_tags} tt JOIN {_T.tags} g ON g.id = tt.tag_id
                    WHERE tt.todo_id = t.id AND g.name = ?)"""
            )
            params.append(q.tag)

        if q.priority is not None:
            clauses.append("t.priority = ?")
            params.append(Priority(q.priority).value)

        if q.mentioned_user:
            clauses.append(
                f"""EXISTS (SELECT 1 FROM {_T.mentions} m JOIN {_T.users} u ON u.id = m.user_id
                    WHERE m.todo_id = t.id AND u.email = ?)"""
            )
            params.append(q.mentioned_user)

        if q.search:
            # LIKE is case-insensitive for ASCII in SQLite
            like = _like_pattern(q.search)
            clauses.append(
                f"""(t.title LIKE ? ESCAPE '\\' OR t.description LIKE ? ESCAPE '\\'
                    OR EXISTS (SELECT 1 FROM {_T.todo_tags} tt JOIN {_T.tags} g ON g.id = tt.tag_id
                        WHERE tt.todo_id = t.id AND g.name LIKE ? ESCAPE '\\'))"""
            )
            params.extend([like, like, like])

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        field = q.sort_by if q.sort_by in SORT_FIELDS else "created_at"
        direction = "ASC" if q.sort_order == "asc" else "DESC"
        order_sql = f"ORDER BY {_SORT_SQL[field]} {direction}, t.rowid {direction}"

        with self._conn() as conn:
            count_row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {_T.todos} t {where_sql}", params).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"""
                SELECT t.* FROM {_T.todos} t
                {where_sql}
                {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*params, -1 if q.limit is None else max(q.limit, 0), q.offset],
            ).fetchall()
            return [self._row_to_todo(conn, r) for r in rows], total

    # mentions

    def list_mentions(self, todo_id: str) -> List[MentionEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT todo_id, user_id FROM {_T.mentions} WHERE todo_id = ? ORDER BY rowid", (todo_id,)
            ).fetchall()
            return [{"todo_id": r["todo_id"], "user_id": r["user_id"]} for r in rows]

    def replace_mentions(self, todo_id: str, user_ids: Sequence[str]) -> None:
        with self._conn() as conn:
            conn.execute(f"DELETE FROM {_T.mentions} WHERE todo_id = ?", (todo_id,))
            conn.executemany(
                f"INSERT INTO {_T.mentions} (todo_id, user_id) VALUES (?, ?)",
                [(todo_id, user_id) for user_id in dict.fromkeys(user_ids)],
            )

    # notes

    def create_note(self, user_id: str, data: NoteCreate) -> Optional[NoteEntity]:
        note_id = uuid.uuid4().hex
        with self._conn() as conn:
            exists = conn.execute(f"SELECT 1 FROM {_T.todos} WHERE id = ?", (data.todo_id,)).fetchone()
            if not exists:
                return None
            conn.execute(
                f"INSERT INTO {_T.notes} (id, content, todo_id, user_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (note_id, data.content, data.todo_id, user_id, datetime.now().isoformat()),
            )
            row = conn.execute(f"SELECT * FROM {_T.notes} WHERE id = ?", (note_id,)).fetchone()
            return self._row_to_note(row)

    def list_notes(self, todo_id: str) -> List[NoteEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_T.notes} WHERE todo_id = ? ORDER BY created_at DESC, rowid DESC", (todo_id,)
            ).fetchall()
            return [self._row_to_note(r) for r in rows]
