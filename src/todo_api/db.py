from __future__ import annotations

import os
import sqlite3
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Generator, Iterable, List, Optional

from .errors import DuplicateTag
from .models import TagEntity, TodoEntity
from .repositories import Clock, Repository, TodoFilter, matches_search, utc_now
from .schemas import SortSettings, TagCreate, TagUpdate, TodoCreate, TodoUpdate


@dataclass(frozen=True)
class _Cols:
    table: str = "todos"
    id: str = "id"
    user_id: str = "user_id"
    title: str = "title"
    description: str = "description"
    status: str = "status"
    priority: str = "priority"
    archived: str = "archived"
    due_date: str = "due_date"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_COLS = _Cols()
_TAGS = "tags"
_LINKS = "tag_todo"
_USER_SETTINGS = "user_settings"


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _fmt_dt(d: Optional[datetime]) -> Optional[str]:
    return d.isoformat() if d else None


class SQLiteRepository(Repository):
    """
    Lightweight SQLite repository implementing the Repository interface.
    """

    def __init__(self, db_path: str, clock: Optional[Clock] = None) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._clock = clock or utc_now
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_COLS.user_id} TEXT NOT NULL,
                    {_COLS.title} TEXT NOT NULL,
                    {_COLS.description} TEXT NULL,
                    {_COLS.status} TEXT NOT NULL DEFAULT 'todo',
                    {_COLS.priority} INTEGER NOT NULL DEFAULT 5,
                    {_COLS.archived} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.due_date} TEXT NULL,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_TAGS} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, name)
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_LINKS} (
                    tag_id INTEGER NOT NULL REFERENCES {_TAGS}(id) ON DELETE CASCADE,
                    todo_id INTEGER NOT NULL REFERENCES {_COLS.table}({_COLS.id}) ON DELETE CASCADE,
                    PRIMARY KEY (tag_id, todo_id)
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_USER_SETTINGS} (
                    user_id TEXT PRIMARY KEY,
                    age_weight REAL NOT NULL,
                    priority_weight REAL NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_user_archived "
                f"ON {_COLS.table}({_COLS.user_id}, {_COLS.archived})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_created_at ON {_COLS.table}({_COLS.created_at})"
            )
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{_LINKS}_todo ON {_LINKS}(todo_id)")

    def _row_to_tag(self, row: sqlite3.Row) -> TagEntity:
        return {
            "id": int(row["id"]),
            "user_id": str(row["user_id"]),
            "name": str(row["name"]),
            "created_at": _parse_dt(row["created_at"]),  # type: ignore
        }

    def _row_to_entity(self, row: sqlite3.Row, tags: List[TagEntity]) -> TodoEntity:
        return {
            "id": int(row[_COLS.id]),
            "user_id": str(row[_COLS.user_id]),
            "title": str(row[_COLS.title]),
            "description": row[_COLS.description] if row[_COLS.description] is not None else None,
            "status": row[_COLS.status],
            "priority": int(row[_COLS.priority]),
            "archived": bool(row[_COLS.archived]),
            "due_date": _parse_dt(row[_COLS.due_date]),
            "created_at": _parse_dt(row[_COLS.created_at]),  # type: ignore
            "updated_at": _parse_dt(row[_COLS.updated_at]),  # type: ignore
            "tags": tags,
        }  # type: ignore

    def _tags_by_todo(self, conn: sqlite3.Connection, user_id: str) -> Dict[int, List[TagEntity]]:
        rows = conn.execute(
            f"""
            SELECT l.todo_id AS todo_id, t.* FROM {_LINKS} l
            JOIN {_TAGS} t ON t.id = l.tag_id
            WHERE t.user_id = ?
            ORDER BY t.name, t.id
            """,
            (user_id,),
        ).fetchall()
        grouped: Dict[int, List[TagEntity]] = defaultdict(list)
        for r in rows:
            grouped[int(r["todo_id"])].append(self._row_to_tag(r))
        return grouped

    def _load_todo(self, conn: sqlite3.Connection, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        row = conn.execute(
            f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ? AND {_COLS.user_id} = ?",
            (todo_id, user_id),
        ).fetchone()
        if not row:
            return None
        tag_rows = conn.execute(
            f"""
            SELECT t.* FROM {_LINKS} l JOIN {_TAGS} t ON t.id = l.tag_id
            WHERE l.todo_id = ? ORDER BY t.name, t.id
            """,
            (todo_id,),
        ).fetchall()
        return self._row_to_entity(row, [self._row_to_tag(r) for r in tag_rows])

    def _resolve_tag_ids(self, conn: sqlite3.Connection, user_id: str, names: Iterable[str]) -> List[int]:
        ids = []
        for name in names:
            row = conn.execute(
                f"SELECT id FROM {_TAGS} WHERE user_id = ? AND name = ?", (user_id, name)
            ).fetchone()
            if row:
                ids.append(int(row["id"]))
                continue
            cur = conn.execute(
                f"INSERT INTO {_TAGS} (user_id, name, created_at) VALUES (?, ?, ?)",
                (user_id, name, self._clock().isoformat()),
            )
            ids.append(int(cur.lastrowid))
        return ids

    def _replace_links(self, conn: sqlite3.Connection, todo_id: int, tag_ids: Iterable[int]) -> None:
        conn.execute(f"DELETE FROM {_LINKS} WHERE todo_id = ?", (todo_id,))
        conn.executemany(
            f"INSERT OR IGNORE INTO {_LINKS} (tag_id, todo_id) VALUES (?, ?)",
            [(tag_id, todo_id) for tag_id in tag_ids],
        )

    def create_todo(self, user_id: str, data: TodoCreate) -> TodoEntity:
        now = self._clock().isoformat()
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {_COLS.table} ({_COLS.user_id}, {_COLS.title}, {_COLS.description},
                    {_COLS.status}, {_COLS.priority}, {_COLS.archived}, {_COLS.due_date},
                    {_COLS.created_at}, {_COLS.updated_at})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    data.title,
                    data.description,
                    data.status,
                    data.priority,
                    1 if data.archived else 0,
                    _fmt_dt(data.due_date),
                    now,
                    now,
                ),
            )
            new_id = int(cur.lastrowid)
            self._replace_links(conn, new_id, self._resolve_tag_ids(conn, user_id, data.tags))
            created = self._load_todo(conn, user_id, new_id)
            assert created is not None
            return created

    def get_todo(self, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        with self._conn() as conn:
            return self._load_todo(conn, user_id, todo_id)

    def update_todo(self, user_id: str, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._conn() as conn:
            current = self._load_todo(conn, user_id, todo_id)
            if current is None:
                return None

            title = data.title if data.title is not None else current["title"]
            status = data.status if data.status is not None else current["status"]
            priority = data.priority if data.priority is not None else current["priority"]
            archived = data.archived if data.archived is not None else current["archived"]
            description = data.description if "description" in data.model_fields_set else current["description"]
            due_date = data.due_date if "due_date" in data.model_fields_set else current["due_date"]
            conn.execute(
                f"""
                UPDATE {_COLS.table}
                SET {_COLS.title} = ?, {_COLS.description} = ?, {_COLS.status} = ?,
                    {_COLS.priority} = ?, {_COLS.archived} = ?, {_COLS.due_date} = ?,
                    {_COLS.updated_at} = ?
                WHERE {_COLS.id} = ?
                """,
                (
                    title,
                    description,
                    status,
                    priority,
                    1 if archived else 0,
                    _fmt_dt(due_date),
                    self._clock().isoformat(),
                    todo_id,
                ),
            )
            if data.tags is not None:
                self._replace_links(conn, todo_id, self._resolve_tag_ids(conn, user_id, data.tags))
            return self._load_todo(conn, user_id, todo_id)

    def delete_todo(self, user_id: str, todo_id: int) -> bool:
        with self._conn() as conn:
            cur = conn.execute(
                f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ? AND {_COLS.user_id} = ?",
                (todo_id, user_id),
            )
            return cur.rowcount > 0

    def list_todos(self, user_id: str, query: Optional[TodoFilter] = None) -> List[TodoEntity]:
        q = query or TodoFilter()
        clauses = [f"{_COLS.user_id} = ?"]
        params: list = [user_id]

        if q.archived is not None:
            clauses.append(f"{_COLS.archived} = ?")
            params.append(1 if q.archived else 0)

        if q.status:
            clauses.append(f"{_COLS.status} = ?")
            params.append(q.status)

        if q.tag_id is not None:
            clauses.append(f"{_COLS.id} IN (SELECT todo_id FROM {_LINKS} WHERE tag_id = ?)")
            params.append(q.tag_id)

        where_sql = f"WHERE {' AND '.join(clauses)}"

        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                {where_sql}
                ORDER BY {_COLS.created_at} DESC, {_COLS.id} DESC
                """,
                params,
            ).fetchall()
            tags = self._tags_by_todo(conn, user_id)
            items = [self._row_to_entity(r, tags.get(int(r[_COLS.id]), [])) for r in rows]
        # Literal, Unicode case-insensitive match; SQL LIKE is neither.
        if q.search:
            items = [t for t in items if matches_search(t, q.search)]
        return items

    def list_tags(self, user_id: str) -> List[TagEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_TAGS} WHERE user_id = ? ORDER BY name, id", (user_id,)
            ).fetchall()
            return [self._row_to_tag(r) for r in rows]

    def get_tag(self, user_id: str, tag_id: int) -> Optional[TagEntity]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT * FROM {_TAGS} WHERE id = ? AND user_id = ?", (tag_id, user_id)
            ).fetchone()
            return self._row_to_tag(row) if row else None

    def create_tag(self, user_id: str, data: TagCreate) -> TagEntity:
        with self._conn() as conn:
            try:
                cur = conn.execute(
                    f"INSERT INTO {_TAGS} (user_id, name, created_at) VALUES (?, ?, ?)",
                    (user_id, data.name, self._clock().isoformat()),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateTag(data.name) from e
            row = conn.execute(f"SELECT * FROM {_TAGS} WHERE id = ?", (cur.lastrowid,)).fetchone()
            return self._row_to_tag(row)

    def update_tag(self, user_id: str, tag_id: int, data: TagUpdate) -> Optional[TagEntity]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT * FROM {_TAGS} WHERE id = ? AND user_id = ?", (tag_id, user_id)
            ).fetchone()
            if not row:
                return None
            if data.name is not None:
                try:
                    conn.execute(f"UPDATE {_TAGS} SET name = ? WHERE id = ?", (data.name, tag_id))
                except sqlite3.IntegrityError as e:
                    raise DuplicateTag(data.name) from e
                row = conn.execute(f"SELECT * FROM {_TAGS} WHERE id = ?", (tag_id,)).fetchone()
            return self._row_to_tag(row)

    def delete_tag(self, user_id: str, tag_id: int) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_TAGS} WHERE id = ? AND user_id = ?", (tag_id, user_id))
            return cur.rowcount > 0

    def _link_targets_exist(self, conn: sqlite3.Connection, user_id: str, todo_id: int, tag_id: int) -> bool:
        todo = conn.execute(
            f"SELECT 1 FROM {_COLS.table} WHERE {_COLS.id} = ? AND {_COLS.user_id} = ?", (todo_id, user_id)
        ).fetchone()
        tag = conn.execute(
            f"SELECT 1 FROM {_TAGS} WHERE id = ? AND user_id = ?", (tag_id, user_id)
        ).fetchone()
        return bool(todo and tag)

    def attach_tag(self, user_id: str, todo_id: int, tag_id: int) -> Optional[TodoEntity]:
        with self._conn() as conn:
            if not self._link_targets_exist(conn, user_id, todo_id, tag_id):
                return None
            conn.execute(
                f"INSERT OR IGNORE INTO {_LINKS} (tag_id, todo_id) VALUES (?, ?)", (tag_id, todo_id)
            )
            return self._load_todo(conn, user_id, todo_id)

    def detach_tag(self, user_id: str, todo_id: int, tag_id: int) -> Optional[TodoEntity]:
        with self._conn() as conn:
            if not self._link_targets_exist(conn, user_id, todo_id, tag_id):
                return None
            conn.execute(f"DELETE FROM {_LINKS} WHERE tag_id = ? AND todo_id = ?", (tag_id, todo_id))
            return self._load_todo(conn, user_id, todo_id)

    def get_sort_settings(self, user_id: str) -> Optional[SortSettings]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT age_weight, priority_weight FROM {_USER_SETTINGS} WHERE user_id = ?", (user_id,)
            ).fetchone()
            if not row:
                return None
            return SortSettings(age_weight=float(row["age_weight"]), priority_weight=float(row["priority_weight"]))

    def save_sort_settings(self, user_id: str, settings: SortSettings) -> SortSettings:
        with self._conn() as conn:
            conn.execute(
                f"""
                INSERT INTO {_USER_SETTINGS} (user_id, age_weight, priority_weight, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    age_weight = excluded.age_weight,
                    priority_weight = excluded.priority_weight,
                    updated_at = excluded.updated_at
                """,
                (user_id, settings.age_weight, settings.priority_weight, self._clock().isoformat()),
            )
            return settings

    def delete_sort_settings(self, user_id: str) -> bool:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_USER_SETTINGS} WHERE user_id = ?", (user_id,))
            return cur.rowcount > 0
