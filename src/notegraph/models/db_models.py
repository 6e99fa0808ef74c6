"""SQLAlchemy database models for notegraph."""
from typing import Optional

from sqlalchemy import (CheckConstraint, Column, DateTime, Float, ForeignKey, Integer,
                        String, Table, Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from notegraph.config import config
from notegraph.models.schema import ConnectionType, utc_now

# Create base class for SQLAlchemy models
Base = declarative_base()

# Association table for note -> category memberships.
# ``position`` keeps the order in which categories were assigned to the note.
note_categories = Table(
    "note_categories",
    Base.metadata,
    Column(
        "note_id", String(64),
        ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True,
    ),
    Column(
        "category_id", String(64),
        ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True,
    ),
    Column("position", Integer, nullable=False, default=0),
)

# Parent -> child edges of the category hierarchy
category_hierarchy = Table(
    "category_hierarchy",
    Base.metadata,
    Column(
        "parent_id", String(64),
        ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True,
    ),
    Column(
        "child_id", String(64),
        ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True,
    ),
    CheckConstraint("parent_id != child_id", name="no_self_hierarchy_edge"),
)


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(64), primary_key=True, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=True)

    # Relationships
    outgoing_connections = relationship(
        "DBConnection",
        foreign_keys="DBConnection.source_id",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    incoming_connections = relationship(
        "DBConnection",
        foreign_keys="DBConnection.target_id",
        back_populates="target",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', content='{self.content[:20]}')>"


class DBConnection(Base):
    """Database model for a weighted connection between notes."""
    __tablename__ = "connections"
    id = Column(String(64), primary_key=True)
    source_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    target_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    strength = Column(Float, nullable=False)
    connection_type = Column(
        String(20), default=ConnectionType.AUTOMATIC.value, nullable=False, index=True
    )
    created_at = Column(DateTime, default=utc_now, nullable=False)

    # Relationships
    source = relationship(
        "DBNote", foreign_keys=[source_id], back_populates="outgoing_connections"
    )
    target = relationship(
        "DBNote", foreign_keys=[target_id], back_populates="incoming_connections"
    )

    __table_args__ = (
        CheckConstraint("source_id != target_id", name="no_self_connection"),
        CheckConstraint("strength >= 0 AND strength <= 1", name="strength_range"),
    )

    def __repr__(self) -> str:
        """Return string representation of connection."""
        return (
            f"<Connection(id='{self.id}', source='{self.source_id}', "
            f"target='{self.target_id}', type='{self.connection_type}')>"
        )


class DBCategory(Base):
    """Database model for a category."""
    __tablename__ = "categories"
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    level = Column(Integer, nullable=False, default=0)
    note_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of category."""
        return f"<Category(id='{self.id}', name='{self.name}', level={self.level})>"


def init_db(db_url: Optional[str] = None) -> Engine:
    """Initialize the database and create missing tables.

    Every connection runs with:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    - foreign keys enforced, so deleting a note cascades to its connections
      and category memberships

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database path.

    Returns:
        The configured engine.
    """
    url = db_url or config.get_db_url()
    if url.endswith(":memory:"):
        # A memory database lives per connection; share one across sessions
        from sqlalchemy.pool import StaticPool
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
