"""Repository for note storage and retrieval."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, insert, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from notekeeper.exceptions import NoteNotFoundError, PersistenceError
from notekeeper.models.db_models import (
    DBAttachment,
    DBNote,
    DBTag,
    SEARCH_FOLD_FUNCTION,
    get_session_factory,
    init_db,
    note_tags,
)
from notekeeper.models.schema import (
    Attachment,
    AttachmentKind,
    Note,
    ensure_timezone_aware,
    generate_id,
    utc_now,
)
from notekeeper.storage.base import Repository
from notekeeper.utils import escape_like_pattern, fold_for_search

logger = logging.getLogger(__name__)


class NoteRepository(Repository[Note]):
    """Repository for note storage and retrieval.

    Notes, their ordered tags and their attachment references live in
    SQLite. Attachment binaries are not touched here; see BlobStorage.
    """

    def __init__(self, engine: Optional[Any] = None, session_factory=None):
        """Initialize the repository.

        Args:
            engine: Pre-configured SQLAlchemy engine. When omitted, the
                configured database file is opened via init_db().
            session_factory: Session factory to use instead of creating one
                from the engine. Lets all repositories share one factory.
        """
        if session_factory is not None:
            self.session_factory = session_factory
            self.engine = None
        else:
            self.engine = engine if engine is not None else init_db()
            self.session_factory = get_session_factory(self.engine)

    # =========================================================================
    # Conversion helpers
    # =========================================================================

    @staticmethod
    def _base_query():
        return select(DBNote).options(
            selectinload(DBNote.tags),
            selectinload(DBNote.attachments),
        )

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a SQLAlchemy DBNote to a domain Note.

        Attachments arrive sorted by (order_index, id) from the
        relationship and are split by kind here, once.
        """
        images: List[Attachment] = []
        audio: List[Attachment] = []
        for db_attachment in db_note.attachments or []:
            attachment = Attachment(
                note_id=db_note.id,
                kind=AttachmentKind(db_attachment.kind),
                path=db_attachment.path,
                order_index=db_attachment.order_index,
            )
            if attachment.kind is AttachmentKind.IMAGE:
                images.append(attachment)
            else:
                audio.append(attachment)

        return Note(
            id=db_note.id,
            title=db_note.title,
            content=db_note.content,
            category=db_note.category,
            tags=[t.name for t in (db_note.tags or [])],
            images=images,
            audio=audio,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    @staticmethod
    def _get_or_create_tag(session: Session, tag_name: str) -> DBTag:
        """Atomically get or create a tag.

        Uses INSERT OR IGNORE followed by SELECT so a tag created by another
        connection in the meantime does not raise an integrity error.
        """
        session.execute(
            text("INSERT OR IGNORE INTO tags (name) VALUES (:name)"), {"name": tag_name}
        )
        return session.scalar(select(DBTag).where(DBTag.name == tag_name))

    def _replace_tags(self, session: Session, note_id: str, tags: List[str]) -> None:
        """Store the note's tags in order; repeats keep their first position."""
        session.execute(delete(note_tags).where(note_tags.c.note_id == note_id))
        seen = set()
        position = 0
        for tag_name in tags:
            if tag_name in seen:
                continue
            seen.add(tag_name)
            db_tag = self._get_or_create_tag(session, tag_name)
            session.execute(
                insert(note_tags).values(
                    note_id=note_id, tag_id=db_tag.id, position=position
                )
            )
            position += 1

    # =========================================================================
    # CRUD
    # =========================================================================

    def create(self, note: Note) -> Note:
        """Create a new note (attachments are registered separately)."""
        if not note.id:
            note.id = generate_id()
        try:
            with self.session_factory() as session:
                session.add(
                    DBNote(
                        id=note.id,
                        title=note.title,
                        content=note.content,
                        category=note.category,
                        created_at=note.created_at,
                        updated_at=note.updated_at,
                    )
                )
                session.flush()
                self._replace_tags(session, note.id, note.tags)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create note {note.id}: {e}")
            raise PersistenceError(
                "Failed to create note",
                operation="create",
                note_id=note.id,
                original_error=e,
            ) from e
        logger.debug(f"Created note {note.id}")
        return note

    def get(self, id: str) -> Optional[Note]:
        """Get a note by ID, with tags and attachments loaded."""
        with self.session_factory() as session:
            db_note = session.scalar(self._base_query().where(DBNote.id == id))
            if db_note is None:
                return None
            return self._db_note_to_model(db_note)

    def exists(self, id: str) -> bool:
        """Check whether a note exists without loading it."""
        with self.session_factory() as session:
            return session.scalar(select(DBNote.id).where(DBNote.id == id)) is not None

    def get_all(self) -> List[Note]:
        """Get all notes, newest-modified first."""
        return self.list_notes()

    def update(self, note: Note) -> Note:
        """Update a note's title, content, category and tags.

        The modified timestamp is refreshed. Attachments are managed
        through AttachmentRepository.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        note.updated_at = utc_now()
        try:
            with self.session_factory() as session:
                db_note = session.get(DBNote, note.id)
                if db_note is None:
                    raise NoteNotFoundError(note.id)
                db_note.title = note.title
                db_note.content = note.content
                db_note.category = note.category
                db_note.updated_at = note.updated_at
                self._replace_tags(session, note.id, note.tags)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update note in database: {e}")
            raise PersistenceError(
                "Failed to update note",
                operation="update",
                note_id=note.id,
                original_error=e,
            ) from e
        return note

    def delete(self, id: str) -> None:
        """Delete a note with its tag associations and attachment records.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        try:
            with self.session_factory() as session:
                db_note = session.get(DBNote, id)
                if db_note is None:
                    raise NoteNotFoundError(id)
                session.execute(delete(note_tags).where(note_tags.c.note_id == id))
                session.execute(delete(DBAttachment).where(DBAttachment.note_id == id))
                session.execute(delete(DBNote).where(DBNote.id == id))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete note {id}: {e}")
            raise PersistenceError(
                "Failed to delete note",
                operation="delete",
                note_id=id,
                original_error=e,
            ) from e
        logger.debug(f"Deleted note {id}")

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def _apply_filters(
        query: Any,
        search: Optional[str] = None,
        category: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> Any:
        """Apply the list filters to a SQLAlchemy query.

        `search` matches title OR content, ignoring case and diacritics; blank search
        text means no search filter. The filters combine with AND.
        """
        if search is not None and search.strip():
            pattern = f"%{escape_like_pattern(fold_for_search(search.strip()))}%"
            fold = getattr(func, SEARCH_FOLD_FUNCTION)
            query = query.where(
                or_(
                    fold(DBNote.title).like(pattern, escape="\\"),
                    fold(DBNote.content).like(pattern, escape="\\"),
                )
            )
        if category is not None:
            query = query.where(DBNote.category == category)
        if tag is not None:
            query = query.where(
                DBNote.id.in_(
                    select(note_tags.c.note_id)
                    .join(DBTag, note_tags.c.tag_id == DBTag.id)
                    .where(DBTag.name == tag)
                )
            )
        return query

    def list_notes(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Note]:
        """List notes newest-modified first, optionally filtered.

        Args:
            search: Case-insensitive substring of title or content.
            category: Exact category to keep.
            tag: Tag name the note must carry.
            limit: Maximum number of notes to return. None for all.
            offset: Number of notes to skip.

        Returns:
            List of Note objects.
        """
        with self.session_factory() as session:
            query = self._apply_filters(self._base_query(), search, category, tag)
            query = query.order_by(DBNote.updated_at.desc(), DBNote.created_at.desc())
            if offset > 0:
                query = query.offset(offset)
            if limit is not None:
                query = query.limit(limit)
            db_notes = session.scalars(query).all()
            return [self._db_note_to_model(n) for n in db_notes]

    def search(self, query: str) -> List[Note]:
        """Find notes whose title or content contains `query`."""
        return self.list_notes(search=query)

    def get_by_category(self, category: str) -> List[Note]:
        """Get all notes in one category."""
        return self.list_notes(category=category)

    def find_by_tag(self, tag: str) -> List[Note]:
        """Get all notes carrying a tag."""
        return self.list_notes(tag=tag)

    def get_categories(self) -> List[str]:
        """Get the distinct categories in use, sorted."""
        with self.session_factory() as session:
            rows = session.scalars(
                select(DBNote.category)
                .where(DBNote.category.is_not(None))
                .distinct()
                .order_by(DBNote.category)
            ).all()
            return list(rows)

    def count_notes(self) -> int:
        """Count all notes."""
        with self.session_factory() as session:
            return session.scalar(select(func.count()).select_from(DBNote)) or 0

    def count_notes_by_category(self) -> Dict[str, int]:
        """Count notes per category (uncategorised notes are not counted)."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.category, func.count(DBNote.id))
                .where(DBNote.category.is_not(None))
                .group_by(DBNote.category)
            ).all()
            return {category: count for category, count in rows}
