"""Repository for attachment records.

Each public method is its own transaction. Database failures surface as
PersistenceError; deciding whether to tolerate them is up to the caller.
"""
import datetime
import logging
from typing import Iterable, List, Set

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from notekeeper.exceptions import NoteNotFoundError, PersistenceError
from notekeeper.models.db_models import DBAttachment, DBNote
from notekeeper.models.schema import Attachment, AttachmentKind, utc_now

logger = logging.getLogger(__name__)


class AttachmentRepository:
    """Stores which blobs belong to which note, and in what order."""

    def __init__(self, session_factory):
        """Initialize the attachment repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    def load_attachments(self, note_id: str, kind: AttachmentKind) -> List[Attachment]:
        """Load one kind of attachment for a note, in display order.

        Ties in order_index fall back to insertion order.
        """
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(DBAttachment)
                    .where(DBAttachment.note_id == note_id, DBAttachment.kind == kind.value)
                    .order_by(DBAttachment.order_index, DBAttachment.id)
                ).all()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to load {kind.value} attachments",
                operation="load_attachments",
                note_id=note_id,
                original_error=e,
            ) from e
        return [
            Attachment(
                note_id=row.note_id,
                kind=kind,
                path=row.path,
                order_index=row.order_index,
            )
            for row in rows
        ]

    def create_attachment(
        self, note_id: str, kind: AttachmentKind, path: str, order_index: int
    ) -> Attachment:
        """Register a stored blob as an attachment of a note.

        Raises:
            NoteNotFoundError: If the note does not exist.
            PersistenceError: If the record cannot be written.
        """
        attachment = Attachment(
            note_id=note_id, kind=kind, path=path, order_index=order_index
        )
        try:
            with self.session_factory() as session:
                if session.get(DBNote, note_id) is None:
                    raise NoteNotFoundError(note_id)
                session.add(
                    DBAttachment(
                        note_id=note_id,
                        kind=kind.value,
                        path=path,
                        order_index=order_index,
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to register {kind.value} attachment",
                operation="create_attachment",
                note_id=note_id,
                original_error=e,
            ) from e
        return attachment

    def delete_attachments(self, note_id: str, paths: Iterable[str]) -> int:
        """Delete the attachment records of a note that point at `paths`.

        Returns:
            Number of records removed.
        """
        paths = list(paths)
        if not paths:
            return 0
        try:
            with self.session_factory() as session:
                result = session.execute(
                    delete(DBAttachment).where(
                        DBAttachment.note_id == note_id, DBAttachment.path.in_(paths)
                    )
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to delete attachment records",
                operation="delete_attachments",
                note_id=note_id,
                original_error=e,
            ) from e

    def reindex_attachments(
        self, note_id: str, kind: AttachmentKind, paths: List[str]
    ) -> int:
        """Renumber attachments so `paths[i]` gets order index `i`.

        Only rows whose index actually changes are written.

        Returns:
            Number of records renumbered.
        """
        changed = 0
        try:
            with self.session_factory() as session:
                current = dict(
                    session.execute(
                        select(DBAttachment.path, DBAttachment.order_index).where(
                            DBAttachment.note_id == note_id,
                            DBAttachment.kind == kind.value,
                        )
                    ).all()
                )
                for position, path in enumerate(paths):
                    if path in current and current[path] != position:
                        session.execute(
                            update(DBAttachment)
                            .where(
                                DBAttachment.note_id == note_id,
                                DBAttachment.path == path,
                            )
                            .values(order_index=position)
                        )
                        changed += 1
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to reorder {kind.value} attachments",
                operation="reindex_attachments",
                note_id=note_id,
                original_error=e,
            ) from e
        return changed

    def touch_modified(self, note_id: str) -> datetime.datetime:
        """Set the note's modified timestamp to now.

        Returns:
            The new timestamp.
        """
        now = utc_now()
        try:
            with self.session_factory() as session:
                result = session.execute(
                    update(DBNote).where(DBNote.id == note_id).values(updated_at=now)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to update modified date",
                operation="touch_modified",
                note_id=note_id,
                original_error=e,
            ) from e
        if not result.rowcount:
            raise NoteNotFoundError(note_id)
        return now

    def all_paths(self) -> Set[str]:
        """Get every blob path referenced by any note."""
        try:
            with self.session_factory() as session:
                return set(session.scalars(select(DBAttachment.path)).all())
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to list attachment paths",
                operation="all_paths",
                original_error=e,
            ) from e
