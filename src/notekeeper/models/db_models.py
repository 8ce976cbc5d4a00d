"""SQLAlchemy database models for notekeeper."""
import datetime
from typing import Optional

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, String, Table,
                        Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from notekeeper.config import config
from notekeeper.models.schema import AttachmentKind
from notekeeper.utils import fold_for_search

# SQL function used by text search; see NoteRepository._apply_filters
SEARCH_FOLD_FUNCTION = "nk_fold"

# Create base class for SQLAlchemy models
Base = declarative_base()

# Association table for tags and notes; position keeps user-entered order
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column("note_id", String(32), ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    Column("position", Integer, nullable=False, default=0),
)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(32), primary_key=True, index=True)
    title = Column(String(255), nullable=False, index=True)
    content = Column(Text, nullable=True)
    category = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False, index=True)

    # Relationships
    tags = relationship(
        "DBTag",
        secondary=note_tags,
        order_by=note_tags.c.position,
        viewonly=True,
    )
    attachments = relationship(
        "DBAttachment",
        back_populates="note",
        cascade="all, delete-orphan",
        order_by=lambda: [DBAttachment.order_index, DBAttachment.id],
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)

    # Relationships
    notes = relationship(
        "DBNote", secondary=note_tags, viewonly=True
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBAttachment(Base):
    """Database model for an image or audio attachment."""
    __tablename__ = "attachments"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        String(32), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind = Column(String(16), default=AttachmentKind.IMAGE.value, nullable=False, index=True)
    path = Column(String(255), unique=True, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)

    # Relationships
    note = relationship("DBNote", back_populates="attachments")

    def __repr__(self) -> str:
        """Return string representation of attachment."""
        return (
            f"<Attachment(id={self.id}, note='{self.note_id}', "
            f"kind='{self.kind}', path='{self.path}')>"
        )


def init_db(db_url: Optional[str] = None, in_memory: bool = False) -> Engine:
    """Create the engine and schema.

    Applies SQLite settings on every connection:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode (good balance of safety vs speed)
    - foreign keys enforced so attachment rows follow their note

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured database file.
        in_memory: Use a private in-memory database (tests, dry runs).

    Returns:
        The configured engine.
    """
    if in_memory:
        # One shared connection, otherwise every checkout sees an empty database
        engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            db_url or config.get_db_url(),
            pool_pre_ping=True,    # Validate connections before use
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        dbapi_connection.create_function(
            SEARCH_FOLD_FUNCTION, 1, fold_for_search, deterministic=True
        )

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
