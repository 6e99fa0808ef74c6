"""Data models for notegraph."""

import datetime
import uuid
from datetime import timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import (
    BaseModel,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite drops timezone information, so values read back from the database
    are naive and assumed to be UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate a unique identifier for notes, connections and categories.

    Uses a random UUID4 rendered as 32 hex characters, so ids never collide
    even when many notes are created within the same clock tick.
    """
    return uuid.uuid4().hex


class ConnectionType(str, Enum):
    """How a connection between two notes came to exist."""

    AUTOMATIC = "automatic"  # Derived from text similarity; regenerable
    MANUAL = "manual"  # Asserted by a user; survives recalculation


class Note(BaseModel):
    """A free-text note."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    content: str = Field(..., description="Content of the note")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: Optional[datetime.datetime] = Field(
        default=None, description="When the note was last edited (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is not blank."""
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        return v

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Validate that the content is not empty."""
        if not v.strip():
            raise ValueError("Content cannot be empty")
        return v


class Connection(BaseModel):
    """A weighted, typed edge between two notes."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the connection")
    source_id: str = Field(..., description="ID of the source note")
    target_id: str = Field(..., description="ID of the target note")
    strength: float = Field(..., ge=0.0, le=1.0, description="Relatedness in [0, 1]")
    connection_type: ConnectionType = Field(
        default=ConnectionType.AUTOMATIC, description="Origin of the connection"
    )
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the connection was created (UTC)"
    )

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "frozen": True,  # Connections are immutable
    }

    @model_validator(mode="after")
    def _reject_self_connection(self) -> "Connection":
        if self.source_id == self.target_id:
            raise ValueError("A note cannot be connected to itself")
        return self

    def touches(self, note_id: str) -> bool:
        """Return True if either endpoint is the given note."""
        return self.source_id == note_id or self.target_id == note_id

    def pair_key(self) -> frozenset:
        """Unordered endpoint pair, used for deduplication."""
        return frozenset((self.source_id, self.target_id))


class Category(BaseModel):
    """A node of the category hierarchy."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the category")
    name: str = Field(..., description="Display name of the category")
    level: int = Field(default=0, ge=0, description="Specificity, 0 is most general")
    note_count: int = Field(default=0, ge=0, description="Notes currently in the category")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the category was created (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the name is not empty and trim surrounding space."""
        if not v.strip():
            raise ValueError("Category name cannot be empty")
        return v.strip()

    def __str__(self) -> str:
        """Return string representation of category."""
        return self.name


class CategorySuggestion(BaseModel):
    """One category proposed by the LLM classifier."""

    name: StrictStr = Field(..., min_length=1)
    level: StrictInt = Field(..., ge=0)

    model_config = {"extra": "ignore", "frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Suggested category name cannot be blank")
        return v.strip()


class CategorySuggestions(BaseModel):
    """The JSON object the classifier prompt asks for.

    Shape: ``{"categories": [{"name": str, "level": int}, ...]}`` with one to
    three entries ordered general to specific.
    """

    categories: List[CategorySuggestion] = Field(..., min_length=1, max_length=3)

    model_config = {"extra": "ignore", "frozen": True}


class CategoryRef(BaseModel):
    """Identity of a category inside a result object."""

    id: str
    name: str


class CategoryResult(BaseModel):
    """Outcome of categorizing one note."""

    note_id: str
    categories: List[Category] = Field(default_factory=list)


class ParentCategoryResult(BaseModel):
    """Parent category created or reused when two connected notes overlap."""

    source_note_id: str
    target_note_id: str
    parent_category: CategoryRef


class RecalculationResult(BaseModel):
    """Outcome of a full recalculation of automatic connections."""

    connection_count: int = 0
    parent_categories: List[ParentCategoryResult] = Field(default_factory=list)


class CategoryHierarchyView(BaseModel):
    """All categories plus the parent -> children adjacency lists."""

    categories: List[Category] = Field(default_factory=list)
    hierarchy: Dict[str, List[str]] = Field(default_factory=dict)


class NoteCreationResult(BaseModel):
    """A stored note together with the graph changes its creation caused."""

    note: Note
    connections: List[Connection] = Field(default_factory=list)
    categories: List[Category] = Field(default_factory=list)


class ConnectionCreationResult(BaseModel):
    """A manual connection and the parent category it may have produced."""

    connection: Connection
    category_update: Optional[ParentCategoryResult] = None


class GraphNode(BaseModel):
    """A note as shown in a graph visualization."""

    id: str
    label: str
    content: str
    created_at: datetime.datetime


class GraphEdge(BaseModel):
    """A connection as shown in a graph visualization."""

    id: str
    source: str
    target: str
    strength: float
    type: ConnectionType


class GraphData(BaseModel):
    """Nodes and edges of the whole note graph."""

    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class Pagination(BaseModel):
    """Paging metadata for note listings."""

    current_page: int
    total_pages: int
    total_notes: int
    has_next_page: bool
    has_prev_page: bool


class NotePage(BaseModel):
    """One page of notes, newest first."""

    notes: List[Note] = Field(default_factory=list)
    pagination: Pagination
