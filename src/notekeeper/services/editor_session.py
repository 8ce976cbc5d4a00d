"""Editing session for a single note.

A session holds the editable text fields and an AttachmentLedger. User
events only change this in-memory state; save() is the one place where
the database and blob storage are written.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from notekeeper.exceptions import (
    ErrorCode,
    NoteValidationError,
    RecordingError,
    SessionClosedError,
    ValidationError,
)
from notekeeper.models.schema import AttachmentKind, Note
from notekeeper.observability import timed_operation
from notekeeper.services.ledger import AttachmentLedger
from notekeeper.services.recording import RecordingCapability
from notekeeper.utils import format_tags, parse_tags

if TYPE_CHECKING:
    from notekeeper.services.note_service import CommitReport, NoteService

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("title", "content", "category", "tags")


class NoteEditorSession:
    """One user editing one note, from open until save or cancel."""

    def __init__(self, service: "NoteService", note: Optional[Note] = None):
        """Open a session.

        Args:
            service: Service the session loads from and saves through.
            note: The note being edited, or None to create a new one.
        """
        self.service = service
        self.note = note
        self.last_report: Optional["CommitReport"] = None
        self._closed = False
        self._initial = self._fields_from(note)
        self._fields = dict(self._initial)

        if note is None:
            self.ledger = AttachmentLedger()
        else:
            self.ledger = AttachmentLedger.from_attachments(
                service.load_attachments(note.id), resolve=service.resolve_payload
            )
        logger.debug(
            f"Opened editor for {'new note' if note is None else note.id} "
            f"({self.ledger.count(AttachmentKind.IMAGE)} images, "
            f"{self.ledger.count(AttachmentKind.AUDIO)} audio)"
        )

    @staticmethod
    def _fields_from(note: Optional[Note]) -> dict:
        if note is None:
            return {field: "" for field in TEXT_FIELDS}
        return {
            "title": note.title,
            "content": note.content or "",
            "category": note.category or "",
            "tags": format_tags(note.tags),
        }

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_new(self) -> bool:
        return self.note is None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def title(self) -> str:
        return self._fields["title"]

    @property
    def content(self) -> str:
        return self._fields["content"]

    @property
    def category(self) -> str:
        return self._fields["category"]

    @property
    def tags_text(self) -> str:
        return self._fields["tags"]

    @property
    def images(self) -> Tuple[Any, ...]:
        """Images in display order: bytes, or a path when unreadable."""
        return self.ledger.working_items(AttachmentKind.IMAGE)

    @property
    def audio(self) -> Tuple[Any, ...]:
        """Voice memos in display order: stored paths or finished recordings."""
        return self.ledger.working_items(AttachmentKind.AUDIO)

    @property
    def has_changes(self) -> bool:
        """Whether saving now would change anything."""
        return self._fields != self._initial or self.ledger.has_changes

    # =========================================================================
    # Events
    # =========================================================================

    def on_text_changed(self, field: str, value: Optional[str]) -> None:
        """Record new text for one of title, content, category or tags."""
        self._ensure_open()
        if field not in TEXT_FIELDS:
            raise ValidationError(
                f"Unknown field '{field}'", field="field", value=field
            )
        self._fields[field] = value or ""

    def on_media_picked(self, kind: AttachmentKind, payload: Any) -> None:
        """Add a picked image (bytes or file) or audio file to the note."""
        self._ensure_open()
        if not isinstance(kind, AttachmentKind):
            raise ValidationError(
                f"Unknown attachment kind '{kind}'",
                field="kind",
                value=kind,
                code=ErrorCode.INVALID_ATTACHMENT_KIND,
            )
        self.ledger.add_item(kind, payload)

    def remove_media(self, kind: AttachmentKind, index: int) -> Any:
        """Remove the attachment at `index`; returns what was removed."""
        self._ensure_open()
        payload = self.ledger.remove_item(kind, index)
        if self._is_staged(payload):
            self.service.blobs.discard(Path(payload))
        return payload

    def record_audio(self, recorder: RecordingCapability) -> Optional[Path]:
        """Record a voice memo and add it to the note.

        The ledger only changes when a recording finishes with audio. A
        denied permission, a cancelled recording or a failed one leave it
        as it was.

        Returns:
            The finished recording, or None if nothing was added.
        """
        self._ensure_open()
        if not recorder.request_permission():
            logger.info("Microphone permission denied, not recording")
            return None

        try:
            handle = recorder.start_recording()
        except RecordingError as e:
            logger.error(f"Could not start recording: {e}")
            return None

        try:
            path = recorder.stop(handle)
        except RecordingError as e:
            logger.error(f"Recording failed: {e}")
            return None

        if path is None:
            logger.info("Recording cancelled")
            return None
        self.ledger.add_item(AttachmentKind.AUDIO, path)
        return path

    # =========================================================================
    # Save / cancel
    # =========================================================================

    def _is_staged(self, payload: Any) -> bool:
        return isinstance(payload, (str, Path)) and self.service.blobs.is_staged(
            Path(payload)
        )

    def save(self) -> Note:
        """Write the note and its attachment changes, then close.

        Raises:
            NoteValidationError: If the title is empty. Nothing has been
                written and the session stays open.
        """
        self._ensure_open()
        title = self._fields["title"]
        if not title.strip():
            raise NoteValidationError(
                "Title is required",
                field="title",
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )

        with timed_operation("save_session", is_new=self.is_new) as op:
            tags = parse_tags(self._fields["tags"])
            if self.note is None:
                note = self.service.create_note(
                    title=title,
                    content=self._fields["content"] or None,
                    category=self._fields["category"] or None,
                    tags=tags,
                )
            else:
                note = self.service.update_note(
                    self.note.id,
                    title=title,
                    content=self._fields["content"],
                    category=self._fields["category"],
                    tags=tags,
                )

            diff = self.ledger.compute_diff()
            if diff.has_changes:
                self.last_report = self.service.commit_attachments(note.id, diff)
                op["failures"] = len(self.last_report.failures)
            op["note_id"] = note.id

        self._closed = True
        saved = self.service.get_note(note.id)
        return saved if saved is not None else note

    def cancel(self) -> None:
        """Throw away every change made in this session."""
        self._ensure_open()
        for path in self.staged_recordings():
            self.service.blobs.discard(path)
        self._closed = True
        logger.debug("Editor session cancelled")

    def staged_recordings(self) -> List[Path]:
        """Recordings made this session that are not stored yet."""
        return [
            Path(p)
            for p in self.ledger.pending_items(AttachmentKind.AUDIO)
            if self._is_staged(p)
        ]
