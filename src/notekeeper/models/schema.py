"""Data models for notekeeper."""

import datetime
import uuid
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from notekeeper.utils import truncate, validate_relative_path

NO_CONTENT_PLACEHOLDER = "No content"
DATE_DISPLAY_FORMAT = "%Y-%m-%d %H:%M"


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes even when aware ones were stored.

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
    """Generate an opaque, collision-free note identifier."""
    return uuid.uuid4().hex


class AttachmentKind(str, Enum):
    """Kinds of binary attachments a note can carry."""

    IMAGE = "image"
    AUDIO = "audio"

    @property
    def directory(self) -> str:
        """Blob storage directory for this kind."""
        return _KIND_DIRECTORIES[self]

    @property
    def extension(self) -> str:
        """File extension (without dot) used for new blobs of this kind."""
        return _KIND_EXTENSIONS[self]


_KIND_DIRECTORIES: Dict[AttachmentKind, str] = {
    AttachmentKind.IMAGE: "Images",
    AttachmentKind.AUDIO: "Audio",
}

_KIND_EXTENSIONS: Dict[AttachmentKind, str] = {
    AttachmentKind.IMAGE: "jpg",
    AttachmentKind.AUDIO: "m4a",
}


class Attachment(BaseModel):
    """A reference from a note to one stored binary."""

    note_id: str = Field(..., description="ID of the owning note")
    kind: AttachmentKind = Field(..., description="Image or audio")
    path: str = Field(..., description="Relative blob storage path")
    order_index: int = Field(
        default=0, ge=0, description="Display order among same-kind siblings"
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate that the path stays inside blob storage."""
        return validate_relative_path(v, "Attachment path")


class Note(BaseModel):
    """A personal note."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title of the note")
    content: Optional[str] = Field(default=None, description="Body text")
    category: Optional[str] = Field(default=None, description="Optional category")
    tags: List[str] = Field(
        default_factory=list, description="Tags in user-entered order"
    )
    images: List[Attachment] = Field(
        default_factory=list, description="Image attachments in display order"
    )
    audio: List[Attachment] = Field(
        default_factory=list, description="Voice memos in display order"
    )
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last modified (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank category as no category."""
        if v is None or not v.strip():
            return None
        return v.strip()

    def attachments(self, kind: AttachmentKind) -> List[Attachment]:
        """Get the attachments of one kind in display order."""
        if kind is AttachmentKind.IMAGE:
            return self.images
        return self.audio

    def attachment_paths(self, kind: AttachmentKind) -> List[str]:
        """Get the relative paths of one kind of attachment in display order."""
        return [a.path for a in self.attachments(kind)]


@dataclass(frozen=True)
class NoteSummary:
    """What a row in the note list shows.

    Attributes:
        note_id: ID of the summarised note.
        title: Note title.
        preview: Start of the content, or a placeholder when there is none.
        date_label: Modified (or created) date formatted for display.
        category: Category badge text, None when the note has no category.
        image_count: Number of attached images.
        audio_count: Number of attached voice memos.
    """

    note_id: str
    title: str
    preview: str
    date_label: str
    category: Optional[str]
    image_count: int
    audio_count: int

    @classmethod
    def from_note(cls, note: Note, preview_length: int = 120) -> "NoteSummary":
        """Build the list-row view of a note."""
        content = (note.content or "").strip()
        preview = (
            truncate(" ".join(content.split()), preview_length)
            if content
            else NO_CONTENT_PLACEHOLDER
        )
        stamp = note.updated_at or note.created_at
        return cls(
            note_id=note.id,
            title=note.title,
            preview=preview,
            date_label=stamp.strftime(DATE_DISPLAY_FORMAT),
            category=note.category,
            image_count=len(note.images),
            audio_count=len(note.audio),
        )
