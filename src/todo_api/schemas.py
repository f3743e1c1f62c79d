from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import TodoStatus

# Shared type for incoming due_date which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]
DueDate = Optional[datetime]


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize due_date input into an aware datetime (naive allowed).
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, return as-is.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        # Promote a date to a datetime at midnight
        return datetime(value.year, value.month, value.day, 0, 0, 0)

    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            # If only a date is provided, convert to midnight
            try:
                d = date.fromisoformat(s)
                return datetime(d.year, d.month, d.day, 0, 0, 0)
            except ValueError as e:
                raise ValueError(
                    "Invalid due_date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    # Any other type is invalid
    raise ValueError("Invalid type for due_date; expected date, datetime, or ISO8601 string.")


def _clean_title(v: str) -> str:
    s = v.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError("title length must be between 1 and 200 characters")
    return s


def _clean_tag_names(names: List[str]) -> List[str]:
    """Trim names, drop blanks and case-sensitive duplicates while keeping input order."""
    seen = set()
    out: List[str] = []
    for name in names:
        s = name.strip()
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


# PUBLIC_INTERFACE
class SortSettings(BaseModel):
    """
    Weights used by the ranking engine.

    Both weights are required and must lie in [0.0, 1.0]; anything else is
    rejected at construction so that the ranking engine never sees invalid
    weights. Serialized with camelCase names (`ageWeight`, `priorityWeight`);
    snake_case is accepted on input.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        json_schema_extra={"example": {"ageWeight": 0.5, "priorityWeight": 0.5}},
    )

    age_weight: float = Field(
        ...,
        alias="ageWeight",
        ge=0.0,
        le=1.0,
        strict=True,
        allow_inf_nan=False,
        description="How strongly age influences the score (0..1)",
    )
    priority_weight: float = Field(
        ...,
        alias="priorityWeight",
        ge=0.0,
        le=1.0,
        strict=True,
        allow_inf_nan=False,
        description="How strongly priority influences the score (0..1)",
    )


# PUBLIC_INTERFACE
class TagCreate(BaseModel):
    """Schema for creating a tag."""

    model_config = ConfigDict(json_schema_extra={"example": {"name": "work"}})

    name: str = Field(..., description="Tag name, unique per user", min_length=1, max_length=50)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("name must not be blank")
        return s


# PUBLIC_INTERFACE
class TagUpdate(BaseModel):
    """Schema for renaming a tag."""

    name: Optional[str] = Field(default=None, description="New tag name", min_length=1, max_length=50)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        s = v.strip()
        if not s:
            raise ValueError("name must not be blank")
        return s


# PUBLIC_INTERFACE
class TagOut(BaseModel):
    """Schema returned by the API for a tag."""

    id: int = Field(..., description="Unique identifier of the tag")
    name: str = Field(..., description="Tag name")
    created_at: datetime = Field(..., description="Creation timestamp")


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "status": "todo",
                "priority": 7,
                "due_date": "2025-02-01",
                "tags": ["shopping"],
            }
        }
    )

    title: str = Field(..., description="Short title for the todo item", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: TodoStatus = Field(default="todo", description="Workflow status")
    priority: int = Field(default=5, ge=1, le=10, description="Urgency from 1 (lowest) to 10 (highest)")
    archived: bool = Field(default=False, description="Archive flag")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time of the todo item. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    tags: List[str] = Field(default_factory=list, description="Tag names; unknown names are created")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return _clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize due_date from str/date/datetime to datetime.
        """
        return _parse_due_date(v)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: List[str]) -> List[str]:
        return _clean_tag_names(v)


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for updating an existing Todo item.
    All fields are optional; only provided fields will be updated.
    Passing `tags` replaces the full tag set of the todo.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries and supplies",
                "status": "in_progress",
                "priority": 8,
                "due_date": "2025-02-02T09:30:00",
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the todo item", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: Optional[TodoStatus] = Field(default=None, description="Workflow status")
    priority: Optional[int] = Field(default=None, ge=1, le=10, description="Urgency from 1 to 10")
    archived: Optional[bool] = Field(default=None, description="Archive flag")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time of the todo item. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    tags: Optional[List[str]] = Field(default=None, description="Replacement tag names")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce 1..200 length.
        """
        if v is None:
            return v
        return _clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize due_date from str/date/datetime to datetime.
        """
        return _parse_due_date(v)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return None if v is None else _clean_tag_names(v)


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 123,
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "status": "todo",
                "priority": 7,
                "archived": False,
                "due_date": "2025-02-01T00:00:00",
                "created_at": "2025-01-25T10:15:30.123456+00:00",
                "updated_at": "2025-01-26T09:00:00.000001+00:00",
                "tags": [{"id": 1, "name": "shopping", "created_at": "2025-01-20T08:00:00+00:00"}],
            }
        }
    )

    id: int = Field(..., description="Unique identifier of the todo item")
    title: str = Field(..., description="Short title for the todo item")
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    status: TodoStatus = Field(..., description="Workflow status")
    priority: int = Field(..., description="Urgency from 1 (lowest) to 10 (highest)")
    archived: bool = Field(..., description="Archive flag")
    due_date: Optional[datetime] = Field(
        default=None, description="Due date/time of the todo item as an ISO8601 datetime"
    )
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")
    tags: List[TagOut] = Field(default_factory=list, description="Attached tags")


# PUBLIC_INTERFACE
class RankedTodoOut(TodoOut):
    """Todo item as listed; `score` is set when the list was ordered by the ranking engine."""

    score: Optional[float] = Field(default=None, description="Ranking score, higher is shown first")


# PUBLIC_INTERFACE
class ExtractedTodo(BaseModel):
    """
    A todo proposed by the voice extraction step. Nothing is stored until the
    client submits it through the bulk create endpoint.
    """

    title: str = Field(..., description="Clear, concise title for the todo", min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, description="Detailed description if context was provided")
    priority: int = Field(default=9, ge=1, le=10, description="Priority level, 9 unless specified")
    due_date: Optional[str] = Field(default=None, description="ISO date string if a deadline was mentioned")
    tags: List[str] = Field(default_factory=list, description="Relevant tags based on content categories")
    transcription_segment: str = Field(
        default="", description="The part of the transcription that led to this todo"
    )

    @field_validator("title", mode="before")
    @classmethod
    def trim_title(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()[:100]
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, v: Any) -> int:
        """Model output is not trusted to respect the range; clamp instead of failing the batch."""
        if v is None:
            return 9
        try:
            p = int(round(float(v)))
        except (TypeError, ValueError):
            return 9
        return max(1, min(10, p))

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v: Any) -> List[str]:
        if not v:
            return []
        return _clean_tag_names([str(t) for t in v])


class ExtractionResult(BaseModel):
    todos: List[ExtractedTodo] = Field(default_factory=list)


class ProcessingMetadata(BaseModel):
    timestamp: datetime
    transcription_length: int
    todos_count: int
    model_used: str
    whisper_model: str


# PUBLIC_INTERFACE
class VoiceProcessResponse(BaseModel):
    """Result of turning one recording into proposed todos."""

    success: bool = True
    todos: List[ExtractedTodo]
    transcription: str
    processing_metadata: ProcessingMetadata


# PUBLIC_INTERFACE
class TodoBulkCreate(BaseModel):
    """Several todos created in one request, e.g. the accepted results of a voice recording."""

    todos: List[TodoCreate] = Field(..., min_length=1, max_length=100, description="Todos to create")
