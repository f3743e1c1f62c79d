from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from loguru import logger

from .errors import DuplicateTag
from .models import TagEntity, TodoEntity
from .schemas import SortSettings, TagCreate, TagUpdate, TodoCreate, TodoUpdate
from .settings import get_settings

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TodoFilter:
    """
    Filters for listing todos. Ordering and pagination are applied by the caller.
    """
    archived: Optional[bool] = False
    status: Optional[str] = None
    tag_id: Optional[int] = None
    search: Optional[str] = None


def matches_search(todo: TodoEntity, search: str) -> bool:
    s = search.lower()
    title_ok = s in (todo["title"] or "").lower()
    desc_ok = s in (todo["description"] or "").lower() if todo["description"] else False
    return title_ok or desc_ok


# PUBLIC_INTERFACE
class Repository(ABC):
    """
    Abstract storage contract for todos, tags and per-user sort settings.

    Every operation is scoped by `user_id`; rows owned by another user behave
    as if they did not exist.
    """

    # Todos

    @abstractmethod
    def create_todo(self, user_id: str, data: TodoCreate) -> TodoEntity:
        """Create and return a new TodoEntity. Tag names are resolved, unknown names are created."""

    def create_todos(self, user_id: str, items: Iterable[TodoCreate]) -> List[TodoEntity]:
        """Create several todos, returned in input order."""
        return [self.create_todo(user_id, item) for item in items]

    @abstractmethod
    def get_todo(self, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        """Return a TodoEntity by id, or None if not found."""

    @abstractmethod
    def update_todo(self, user_id: str, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        """Update fields of an existing TodoEntity. Return updated entity or None if not found."""

    @abstractmethod
    def delete_todo(self, user_id: str, todo_id: int) -> bool:
        """Delete a TodoEntity and its tag links. Return True if deleted, False if not found."""

    @abstractmethod
    def list_todos(self, user_id: str, query: Optional[TodoFilter] = None) -> List[TodoEntity]:
        """
        Return all TodoEntities matching the filter, newest first.
        - Filter by archived flag, status and attached tag
        - Substring search across title and description (case-insensitive)
        """

    # Tags

    @abstractmethod
    def list_tags(self, user_id: str) -> List[TagEntity]:
        """Return the user's tags ordered by name."""

    @abstractmethod
    def get_tag(self, user_id: str, tag_id: int) -> Optional[TagEntity]:
        """Return a tag by id, or None if not found."""

    @abstractmethod
    def create_tag(self, user_id: str, data: TagCreate) -> TagEntity:
        """Create a tag. Raises DuplicateTag if the name is taken."""

    @abstractmethod
    def update_tag(self, user_id: str, tag_id: int, data: TagUpdate) -> Optional[TagEntity]:
        """Rename a tag. Returns None if not found, raises DuplicateTag on a name clash."""

    @abstractmethod
    def delete_tag(self, user_id: str, tag_id: int) -> bool:
        """Delete a tag and detach it from all todos."""

    @abstractmethod
    def attach_tag(self, user_id: str, todo_id: int, tag_id: int) -> Optional[TodoEntity]:
        """Link a tag to a todo (idempotent). None if either does not exist."""

    @abstractmethod
    def detach_tag(self, user_id: str, todo_id: int, tag_id: int) -> Optional[TodoEntity]:
        """Unlink a tag from a todo. None if either does not exist."""

    # Sort settings

    @abstractmethod
    def get_sort_settings(self, user_id: str) -> Optional[SortSettings]:
        """Return stored settings or None when the user has none."""

    @abstractmethod
    def save_sort_settings(self, user_id: str, settings: SortSettings) -> SortSettings:
        """Insert or replace the user's settings."""

    @abstractmethod
    def delete_sort_settings(self, user_id: str) -> bool:
        """Remove stored settings. Return True if a row existed."""


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._lock = RLock()
        self._clock = clock or utc_now
        self._todos: Dict[int, Dict[str, Any]] = {}
        self._tags: Dict[int, TagEntity] = {}
        self._links: Dict[int, Set[int]] = {}
        self._sort_settings: Dict[str, SortSettings] = {}
        self._next_todo_id = 1
        self._next_tag_id = 1

    def _now(self) -> datetime:
        return self._clock()

    def _materialize(self, row: Dict[str, Any]) -> TodoEntity:
        tags = [self._tags[t].copy() for t in self._links.get(row["id"], set()) if t in self._tags]
        tags.sort(key=lambda t: (t["name"], t["id"]))
        entity = dict(row)
        entity["tags"] = tags
        return entity  # type: ignore[return-value]

    def _owned_todo(self, user_id: str, todo_id: int) -> Optional[Dict[str, Any]]:
        row = self._todos.get(todo_id)
        return row if row is not None and row["user_id"] == user_id else None

    def _owned_tag(self, user_id: str, tag_id: int) -> Optional[TagEntity]:
        tag = self._tags.get(tag_id)
        return tag if tag is not None and tag["user_id"] == user_id else None

    def _find_tag_by_name(self, user_id: str, name: str) -> Optional[TagEntity]:
        for tag in self._tags.values():
            if tag["user_id"] == user_id and tag["name"] == name:
                return tag
        return None

    def _new_tag(self, user_id: str, name: str) -> TagEntity:
        tag: TagEntity = {
            "id": self._next_tag_id,
            "user_id": user_id,
            "name": name,
            "created_at": self._now(),
        }
        self._next_tag_id += 1
        self._tags[tag["id"]] = tag
        return tag

    def _resolve_tag_ids(self, user_id: str, names: Iterable[str]) -> Set[int]:
        ids = set()
        for name in names:
            tag = self._find_tag_by_name(user_id, name) or self._new_tag(user_id, name)
            ids.add(tag["id"])
        return ids

    def create_todo(self, user_id: str, data: TodoCreate) -> TodoEntity:
        now = self._now()
        with self._lock:
            row: Dict[str, Any] = {
                "id": self._next_todo_id,
                "user_id": user_id,
                "title": data.title,
                "description": data.description,
                "status": data.status,
                "priority": data.priority,
                "archived": data.archived,
                "due_date": data.due_date,
                "created_at": now,
                "updated_at": now,
            }
            self._next_todo_id += 1
            self._todos[row["id"]] = row
            self._links[row["id"]] = self._resolve_tag_ids(user_id, data.tags)
            return self._materialize(row)

    def get_todo(self, user_id: str, todo_id: int) -> Optional[TodoEntity]:
        with self._lock:
            row = self._owned_todo(user_id, todo_id)
            return None if row is None else self._materialize(row)

    def update_todo(self, user_id: str, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        with self._lock:
            existing = self._owned_todo(user_id, todo_id)
            if existing is None:
                return None

            # Update only provided fields
            updated = existing.copy()
            for field in ("title", "status", "priority", "archived"):
                value = getattr(data, field)
                if value is not None:
                    updated[field] = value
            # Respect explicit nulling of nullable fields
            for field in ("description", "due_date"):
                if field in data.model_fields_set:
                    updated[field] = getattr(data, field)
            if data.tags is not None:
                self._links[todo_id] = self._resolve_tag_ids(user_id, data.tags)
            updated["updated_at"] = self._now()

            self._todos[todo_id] = updated
            return self._materialize(updated)

    def delete_todo(self, user_id: str, todo_id: int) -> bool:
        with self._lock:
            if self._owned_todo(user_id, todo_id) is None:
                return False
            del self._todos[todo_id]
            self._links.pop(todo_id, None)
            return True

    def list_todos(self, user_id: str, query: Optional[TodoFilter] = None) -> List[TodoEntity]:
        q = query or TodoFilter()
        with self._lock:
            items = [self._materialize(r) for r in self._todos.values() if r["user_id"] == user_id]

        if q.archived is not None:
            items = [t for t in items if t["archived"] == q.archived]
        if q.status:
            items = [t for t in items if t["status"] == q.status]
        if q.tag_id is not None:
            items = [t for t in items if any(tag["id"] == q.tag_id for tag in t["tags"])]
        if q.search:
            items = [t for t in items if matches_search(t, q.search)]

        items.sort(key=lambda t: (t["created_at"], t["id"]), reverse=True)
        return items

    def list_tags(self, user_id: str) -> List[TagEntity]:
        with self._lock:
            tags = [t.copy() for t in self._tags.values() if t["user_id"] == user_id]
        tags.sort(key=lambda t: (t["name"], t["id"]))
        return tags

    def get_tag(self, user_id: str, tag_id: int) -> Optional[TagEntity]:
        with self._lock:
            tag = self._owned_tag(user_id, tag_id)
            return None if tag is None else tag.copy()

    def create_tag(self, user_id: str, data: TagCreate) -> TagEntity:
        with self._lock:
            if self._find_tag_by_name(user_id, data.name) is not None:
                raise DuplicateTag(data.name)
            return self._new_tag(user_id, data.name).copy()

    def update_tag(self, user_id: str, tag_id: int, data: TagUpdate) -> Optional[TagEntity]:
        with self._lock:
            tag = self._owned_tag(user_id, tag_id)
            if tag is None:
                return None
            if data.name is not None and data.name != tag["name"]:
                if self._find_tag_by_name(user_id, data.name) is not None:
                    raise DuplicateTag(data.name)
                tag["name"] = data.name
            return tag.copy()

    def delete_tag(self, user_id: str, tag_id: int) -> bool:
        with self._lock:
            if self._owned_tag(user_id, tag_id) is None:
                return False
            del self._tags[tag_id]
            for linked in self._links.values():
                linked.discard(tag_id)
            return True

    def attach_tag(self, user_id: str, todo_id: int, tag_id: int) -> Optional[TodoEntity]:
        with self._lock:
            row = self._owned_todo(user_id, todo_id)
            if row is None or self._owned_tag(user_id, tag_id) is None:
                return None
            self._links.setdefault(todo_id, set()).add(tag_id)
            return self._materialize(row)

    def detach_tag(self, user_id: str, todo_id: int, tag_id: int) -> Optional[TodoEntity]:
        with self._lock:
            row = self._owned_todo(user_id, todo_id)
            if row is None or self._owned_tag(user_id, tag_id) is None:
                return None
            self._links.setdefault(todo_id, set()).discard(tag_id)
            return self._materialize(row)

    def get_sort_settings(self, user_id: str) -> Optional[SortSettings]:
        with self._lock:
            return self._sort_settings.get(user_id)

    def save_sort_settings(self, user_id: str, settings: SortSettings) -> SortSettings:
        with self._lock:
            self._sort_settings[user_id] = settings
            return settings

    def delete_sort_settings(self, user_id: str) -> bool:
        with self._lock:
            return self._sort_settings.pop(user_id, None) is not None


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> Repository:
    """
    Return the process-wide repository selected by settings.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository at SQLITE_DB_PATH
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        logger.info(f"[repository] using sqlite backend at {settings.sqlite_db_path}")
        return SQLiteRepository(settings.sqlite_db_path)
    logger.info("[repository] using in-memory backend")
    return InMemoryRepository()
