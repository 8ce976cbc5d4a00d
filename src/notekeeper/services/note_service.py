"""Service layer for note operations."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import frontmatter

from notekeeper.config import config
from notekeeper.exceptions import (
    ErrorCode,
    NotekeeperError,
    NoteNotFoundError,
    NoteValidationError,
    StorageError,
    ValidationError,
)
from notekeeper.models.schema import AttachmentKind, Note, NoteSummary
from notekeeper.observability import traced
from notekeeper.services.editor_session import NoteEditorSession
from notekeeper.services.ledger import KindDiff, SaveDiff
from notekeeper.storage.attachment_repository import AttachmentRepository
from notekeeper.storage.blob_storage import BlobStorage
from notekeeper.storage.note_repository import NoteRepository
from notekeeper.storage.tag_repository import TagRepository

logger = logging.getLogger(__name__)


@dataclass
class CommitReport:
    """Outcome of applying a SaveDiff.

    Attributes:
        deleted: Blob paths whose records were removed.
        created: Blob paths written and registered.
        reindexed: Number of retained records whose order index changed.
        touched: Whether the note's modified date was refreshed.
        failures: One message per item that could not be applied.
    """

    deleted: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    reindexed: int = 0
    touched: bool = False
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class NoteService:
    """Service for managing notes and their attachments."""

    def __init__(
        self,
        repository: Optional[NoteRepository] = None,
        attachments: Optional[AttachmentRepository] = None,
        tags: Optional[TagRepository] = None,
        blobs: Optional[BlobStorage] = None,
        engine: Optional[Any] = None,
    ):
        """Initialize the service.

        Args:
            repository: Note storage backend. Created with defaults if None.
            attachments: Attachment records; shares the note repository's
                session factory when None.
            tags: Tag queries; shares the note repository's session factory
                when None.
            blobs: Attachment binaries. Uses the configured data directory
                when None.
            engine: Pre-configured SQLAlchemy engine to pass to NoteRepository.
                Only used when repository is None.
        """
        if repository is not None:
            self.repository = repository
        elif engine is not None:
            self.repository = NoteRepository(engine=engine)
        else:
            self.repository = NoteRepository()
        session_factory = self.repository.session_factory
        self.attachments = attachments or AttachmentRepository(session_factory)
        self.tags = tags or TagRepository(session_factory)
        self.blobs = blobs or BlobStorage(config.get_data_dir())

    # =========================================================================
    # Notes
    # =========================================================================

    @staticmethod
    def _check_title(title: Optional[str]) -> str:
        if title is None or not title.strip():
            raise NoteValidationError(
                "Title is required",
                field="title",
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )
        return title

    @traced("create_note")
    def create_note(
        self,
        title: str,
        content: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Note:
        """Create a new note without attachments.

        Raises:
            NoteValidationError: If the title is empty.
        """
        note = Note(
            title=self._check_title(title),
            content=content,
            category=category,
            tags=list(tags or []),
        )
        return self.repository.create(note)

    def get_note(self, note_id: str) -> Optional[Note]:
        """Retrieve a note by ID."""
        return self.repository.get(note_id)

    def require_note(self, note_id: str) -> Note:
        """Retrieve a note by ID, raising if it does not exist."""
        note = self.repository.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Note:
        """Update a note's fields. Fields left as None keep their value.

        Pass an empty string to clear content or category, and an empty
        list to clear the tags.
        """
        note = self.require_note(note_id)
        if title is not None:
            note.title = self._check_title(title)
        if content is not None:
            note.content = content or None
        if category is not None:
            note.category = category
        if tags is not None:
            note.tags = list(tags)
        return self.repository.update(note)

    @traced("delete_note")
    def delete_note(self, note_id: str) -> None:
        """Delete a note, its records and its attachment blobs."""
        note = self.require_note(note_id)
        self.repository.delete(note_id)
        paths = note.attachment_paths(AttachmentKind.IMAGE) + note.attachment_paths(
            AttachmentKind.AUDIO
        )
        if paths:
            removed = self.blobs.delete_many(paths)
            logger.debug(f"Removed {removed} of {len(paths)} blobs for note {note_id}")

    # =========================================================================
    # Queries
    # =========================================================================

    @traced("list_notes")
    def list_notes(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Note]:
        """List notes newest-modified first.

        Args:
            search: Case-insensitive substring of title or content.
            category: Exact category.
            tag: Tag the note must carry.
            limit: Maximum number of notes.
        """
        return self.repository.list_notes(
            search=search, category=category, tag=tag, limit=limit
        )

    def list_summaries(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[NoteSummary]:
        """List notes as rows for display."""
        return [
            NoteSummary.from_note(note, config.preview_length)
            for note in self.list_notes(search=search, category=category, tag=tag)
        ]

    def search_notes(self, query: str) -> List[Note]:
        """Find notes whose title or content contains `query`."""
        return self.repository.search(query)

    def get_notes_by_category(self, category: str) -> List[Note]:
        return self.repository.get_by_category(category)

    def get_categories(self) -> List[str]:
        """Get the distinct categories in use, sorted."""
        return self.repository.get_categories()

    def get_notes_by_tag(self, tag: str) -> List[Note]:
        return self.repository.find_by_tag(tag)

    def get_tags_with_counts(self) -> Dict[str, int]:
        """Get every tag with the number of notes carrying it."""
        return self.tags.get_with_counts()

    def delete_unused_tags(self) -> int:
        return self.tags.delete_unused()

    def export_note(self, note_id: str, format: str = "markdown") -> str:
        """Export a note as Markdown with YAML front matter."""
        note = self.require_note(note_id)
        if format.lower() != "markdown":
            raise ValidationError(
                f"Unsupported export format: {format}", field="format", value=format
            )

        metadata: Dict[str, Any] = {
            "id": note.id,
            "title": note.title,
            "category": note.category,
            "tags": list(note.tags),
            "created": note.created_at.isoformat(),
            "updated": note.updated_at.isoformat(),
        }
        if note.images:
            metadata["images"] = note.attachment_paths(AttachmentKind.IMAGE)
        if note.audio:
            metadata["audio"] = note.attachment_paths(AttachmentKind.AUDIO)

        body = f"# {note.title}\n\n{note.content or ''}".rstrip() + "\n"
        post = frontmatter.Post(body, **metadata)
        return frontmatter.dumps(post)

    # =========================================================================
    # Attachments
    # =========================================================================

    def load_attachments(self, note_id: str) -> Dict[AttachmentKind, list]:
        """Load every kind of attachment for a note, each in display order."""
        return {
            kind: self.attachments.load_attachments(note_id, kind)
            for kind in AttachmentKind
        }

    def _store_payload(self, kind: AttachmentKind, payload: Any) -> str:
        """Put one new payload into blob storage and return its path.

        Bytes are written as-is. A finished recording still in staging is
        moved into place. Any other file path is copied in.
        """
        if isinstance(payload, (bytes, bytearray)):
            return self.blobs.write(kind, bytes(payload))
        if isinstance(payload, (str, Path)):
            path = Path(payload)
            if self.blobs.is_staged(path):
                return self.blobs.promote(path, kind)
            try:
                data = path.read_bytes()
            except OSError as e:
                raise StorageError(
                    f"Failed to read {kind.value} file",
                    operation="import",
                    path=str(path),
                    code=ErrorCode.STORAGE_READ_FAILED,
                    original_error=e,
                ) from e
            return self.blobs.write(kind, data)
        raise ValidationError(
            f"Unsupported {kind.value} payload",
            field="payload",
            value=type(payload).__name__,
            code=ErrorCode.INVALID_ATTACHMENT_KIND,
        )

    def _commit_kind(
        self, note_id: str, kind: AttachmentKind, diff: KindDiff, report: CommitReport
    ) -> bool:
        """Apply one kind's mutations. Returns whether anything changed."""
        changed = False

        for path in diff.to_delete:
            try:
                if self.blobs.delete(path):
                    changed = True
            except StorageError as e:
                logger.error(f"Failed to delete {kind.value} blob {path}: {e}")
                report.failures.append(f"delete blob {path}: {e.message}")
            try:
                if self.attachments.delete_attachments(note_id, [path]):
                    changed = True
                report.deleted.append(path)
            except NotekeeperError as e:
                logger.error(f"Failed to delete {kind.value} record {path}: {e}")
                report.failures.append(f"delete record {path}: {e.message}")

        # Survivors first so they hold 0..n-1 before new items claim n and up
        try:
            reindexed = self.attachments.reindex_attachments(
                note_id, kind, list(diff.retained)
            )
            report.reindexed += reindexed
            changed = changed or bool(reindexed)
        except NotekeeperError as e:
            logger.error(f"Failed to reorder {kind.value} attachments: {e}")
            report.failures.append(f"reorder {kind.value}: {e.message}")

        for item in diff.to_persist_new:
            try:
                path = self._store_payload(kind, item.payload)
            except NotekeeperError as e:
                logger.error(f"Failed to store new {kind.value}: {e}")
                report.failures.append(f"store {kind.value}: {e.message}")
                continue
            try:
                self.attachments.create_attachment(
                    note_id, kind, path, item.order_index
                )
            except NotekeeperError as e:
                logger.error(f"Failed to register {kind.value} {path}: {e}")
                report.failures.append(f"register {path}: {e.message}")
                continue
            report.created.append(path)
            changed = True

        return changed

    @traced("commit_attachments")
    def commit_attachments(self, note_id: str, diff: SaveDiff) -> CommitReport:
        """Apply a SaveDiff to blob storage and the database.

        Each item is applied on its own. A failure is logged, recorded in
        the report and skipped; nothing already applied is rolled back.
        """
        report = CommitReport()
        changed = False
        for kind in AttachmentKind:
            if self._commit_kind(note_id, kind, diff[kind], report):
                changed = True

        if changed:
            try:
                self.attachments.touch_modified(note_id)
                report.touched = True
            except NotekeeperError as e:
                logger.error(f"Failed to update modified date of {note_id}: {e}")
                report.failures.append(f"touch {note_id}: {e.message}")

        if report.failures:
            logger.warning(
                f"Saved note {note_id} with {len(report.failures)} attachment failures"
            )
        return report

    def clean_orphaned_blobs(self) -> List[str]:
        """Remove stored blobs that no note references."""
        return self.blobs.clean_orphans(self.attachments.all_paths())

    def get_stats(self) -> Dict[str, Any]:
        """Summarise what is stored."""
        return {
            "notes": self.repository.count_notes(),
            "by_category": self.repository.count_notes_by_category(),
            "tags": len(self.tags.get_all()),
            "attachments": len(self.attachments.all_paths()),
        }

    # =========================================================================
    # Editing
    # =========================================================================

    def open_editor(self, note_id: Optional[str] = None) -> NoteEditorSession:
        """Start an editing session for a note, or for a new note.

        Raises:
            NoteNotFoundError: If `note_id` is given but does not exist.
        """
        note = self.require_note(note_id) if note_id is not None else None
        return NoteEditorSession(self, note)

    def resolve_payload(self, kind: AttachmentKind, path: str) -> Any:
        """What the editor shows for a stored attachment.

        Images are loaded as bytes. Voice memos stay as paths. An image
        that cannot be read keeps its path so positions still line up.
        """
        if kind is not AttachmentKind.IMAGE:
            return path
        try:
            data = self.blobs.read(path)
        except StorageError as e:
            logger.warning(f"Could not load image {path}: {e}")
            return path
        if data is None:
            logger.warning(f"Image {path} is missing from storage")
            return path
        return data
