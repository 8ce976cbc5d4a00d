"""Tests for the domain models."""
import datetime

import pytest
from pydantic import ValidationError

from notekeeper.models.schema import (
    Attachment,
    AttachmentKind,
    Note,
    NoteSummary,
    ensure_timezone_aware,
)


class TestAttachmentKind:
    def test_directories_and_extensions(self):
        assert AttachmentKind.IMAGE.directory == "Images"
        assert AttachmentKind.IMAGE.extension == "jpg"
        assert AttachmentKind.AUDIO.directory == "Audio"
        assert AttachmentKind.AUDIO.extension == "m4a"

    def test_from_value(self):
        assert AttachmentKind("audio") is AttachmentKind.AUDIO


class TestNote:
    def test_defaults(self):
        note = Note(title="Hello")
        assert len(note.id) == 32
        assert note.content is None
        assert note.tags == []
        assert note.created_at.tzinfo is not None

    def test_ids_are_unique(self):
        assert Note(title="a").id != Note(title="a").id

    @pytest.mark.parametrize("title", ["", "   ", "\n"])
    def test_blank_title_rejected(self, title):
        with pytest.raises(ValidationError):
            Note(title=title)

    def test_blank_category_normalised(self):
        assert Note(title="t", category="  ").category is None
        assert Note(title="t", category=" Work ").category == "Work"

    def test_assignment_is_validated(self):
        note = Note(title="t")
        with pytest.raises(ValidationError):
            note.title = ""

    def test_attachment_paths_by_kind(self):
        note = Note(
            title="t",
            images=[Attachment(note_id="n", kind=AttachmentKind.IMAGE, path="Images/a.jpg")],
        )
        assert note.attachment_paths(AttachmentKind.IMAGE) == ["Images/a.jpg"]
        assert note.attachment_paths(AttachmentKind.AUDIO) == []


class TestAttachment:
    def test_rejects_unsafe_path(self):
        with pytest.raises(ValidationError):
            Attachment(note_id="n", kind=AttachmentKind.IMAGE, path="../secret.jpg")

    def test_rejects_negative_order(self):
        with pytest.raises(ValidationError):
            Attachment(note_id="n", kind=AttachmentKind.IMAGE, path="Images/a.jpg", order_index=-1)

    def test_is_immutable(self):
        attachment = Attachment(note_id="n", kind=AttachmentKind.AUDIO, path="Audio/a.m4a")
        with pytest.raises(ValidationError):
            attachment.order_index = 3


class TestNoteSummary:
    def test_placeholder_without_content(self):
        summary = NoteSummary.from_note(Note(title="Empty", content="  "))
        assert summary.preview == "No content"

    def test_preview_is_collapsed_and_truncated(self):
        note = Note(title="Long", content="line one\n\nline   two " + "x" * 200)
        summary = NoteSummary.from_note(note, preview_length=20)
        assert summary.preview.startswith("line one line two")
        assert len(summary.preview) <= 20
        assert summary.preview.endswith("…")

    def test_date_label_and_counts(self):
        stamp = datetime.datetime(2024, 3, 5, 14, 30, tzinfo=datetime.timezone.utc)
        note = Note(
            title="Dated",
            category="Work",
            created_at=stamp,
            updated_at=stamp,
            audio=[Attachment(note_id="n", kind=AttachmentKind.AUDIO, path="Audio/a.m4a")],
        )
        summary = NoteSummary.from_note(note)
        assert summary.date_label == "2024-03-05 14:30"
        assert summary.category == "Work"
        assert (summary.image_count, summary.audio_count) == (0, 1)


def test_ensure_timezone_aware():
    naive = datetime.datetime(2024, 1, 1, 12, 0)
    assert ensure_timezone_aware(naive).tzinfo == datetime.timezone.utc
    assert ensure_timezone_aware(None).tzinfo is not None
