"""Repository for tag queries."""
import logging
from typing import Dict, List

from sqlalchemy import delete, func, select

from notekeeper.models.db_models import DBTag, note_tags

logger = logging.getLogger(__name__)


class TagRepository:
    """Repository for reading and tidying tags.

    Tags are attached to notes by NoteRepository, which keeps their
    user-entered order. This class answers questions across all notes.
    """

    def __init__(self, session_factory):
        """Initialize the tag repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    def get_all(self) -> List[str]:
        """Get all tag names, sorted.

        Returns:
            List of tag names.
        """
        with self.session_factory() as session:
            return list(session.scalars(select(DBTag.name).order_by(DBTag.name)).all())

    def get_with_counts(self) -> Dict[str, int]:
        """Get all tags with their usage counts.

        Returns:
            Dictionary mapping tag names to their note counts.
        """
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.name, func.count(note_tags.c.note_id))
                .select_from(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .group_by(DBTag.name)
                .order_by(DBTag.name)
            ).all()

            return {name: count for name, count in result}

    def find_note_ids_by_tag(self, tag_name: str) -> List[str]:
        """Find all note IDs that have a specific tag.

        Args:
            tag_name: The name of the tag.

        Returns:
            List of note IDs.
        """
        with self.session_factory() as session:
            result = session.execute(
                select(note_tags.c.note_id)
                .select_from(note_tags)
                .join(DBTag, note_tags.c.tag_id == DBTag.id)
                .where(DBTag.name == tag_name)
            ).all()

            return [row[0] for row in result]

    def get_tags_for_note(self, note_id: str) -> List[str]:
        """Get the tags of one note in their stored order.

        Args:
            note_id: The note ID.

        Returns:
            List of tag names.
        """
        with self.session_factory() as session:
            result = session.execute(
                select(DBTag.name)
                .select_from(DBTag)
                .join(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(note_tags.c.note_id == note_id)
                .order_by(note_tags.c.position)
            ).all()

            return [row[0] for row in result]

    def delete_unused(self) -> int:
        """Delete tags that are not associated with any notes.

        Returns:
            Number of tags deleted.
        """
        with self.session_factory() as session:
            used = select(note_tags.c.tag_id)
            result = session.execute(delete(DBTag).where(DBTag.id.not_in(used)))
            session.commit()
            count = result.rowcount or 0

        if count:
            logger.info(f"Deleted {count} unused tags")
        return count
