from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, TypedDict

TodoStatus = Literal["todo", "in_progress", "done"]


# PUBLIC_INTERFACE
class TagEntity(TypedDict):
    """
    A user-owned label that can be attached to any number of todos.

    Fields:
    - id: Unique integer identifier
    - user_id: Owner of the tag
    - name: Tag name, unique per user (1..50 chars, trimmed on input)
    - created_at: UTC creation timestamp
    """

    id: int
    user_id: str
    name: str
    created_at: datetime


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    A lightweight domain model representing a Todo item for non-ORM storage
    backends.

    Fields:
    - id: Unique integer identifier
    - user_id: Owner of the todo
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - status: One of 'todo', 'in_progress', 'done'
    - priority: Urgency 1 (lowest) .. 10 (highest)
    - archived: Archived todos are listed separately
    - due_date: Optional due datetime (normalized to datetime in schemas)
    - created_at: UTC creation timestamp, never changed after insert
    - updated_at: UTC last update timestamp
    - tags: Tags attached to the todo, ordered by name
    """

    id: int
    user_id: str
    title: str
    description: Optional[str]
    status: TodoStatus
    priority: int
    archived: bool
    due_date: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    tags: List[TagEntity]


class RankedTodo(TodoEntity):
    """A TodoEntity annotated with its transient ranking score."""

    score: float
