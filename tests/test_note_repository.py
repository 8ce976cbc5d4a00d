"""Tests for the SQLAlchemy note repository."""
import pytest
from sqlalchemy import func, select

from notekeeper.exceptions import NoteNotFoundError
from notekeeper.models.db_models import DBAttachment, init_db, note_tags
from notekeeper.models.schema import AttachmentKind, Note
from notekeeper.storage.note_repository import NoteRepository


def test_create_and_get(note_repository):
    note = note_repository.create(
        Note(title="First", content="Body", category="Work", tags=["b", "a"])
    )
    loaded = note_repository.get(note.id)
    assert loaded.title == "First"
    assert loaded.content == "Body"
    assert loaded.category == "Work"
    assert loaded.tags == ["b", "a"]
    assert loaded.images == [] and loaded.audio == []
    assert loaded.created_at.tzinfo is not None


def test_get_missing(note_repository):
    assert note_repository.get("missing") is None
    assert not note_repository.exists("missing")


def test_tags_keep_first_occurrence(note_repository):
    note = note_repository.create(Note(title="Dupes", tags=["x", "y", "x"]))
    assert note_repository.get(note.id).tags == ["x", "y"]


def test_update_replaces_tags(note_repository):
    note = note_repository.create(Note(title="T", tags=["old"]))
    note.tags = ["new", "newer"]
    note.title = "Renamed"
    note_repository.update(note)
    loaded = note_repository.get(note.id)
    assert loaded.title == "Renamed"
    assert loaded.tags == ["new", "newer"]


def test_update_missing(note_repository):
    with pytest.raises(NoteNotFoundError):
        note_repository.update(Note(title="Ghost"))


def test_delete_cascades(note_repository, attachment_repository, session_factory):
    note = note_repository.create(Note(title="Gone", tags=["t"]))
    attachment_repository.create_attachment(
        note.id, AttachmentKind.IMAGE, "Images/a.jpg", 0
    )
    note_repository.delete(note.id)

    assert note_repository.get(note.id) is None
    with session_factory() as session:
        assert session.scalar(select(func.count()).select_from(DBAttachment)) == 0
        assert session.scalar(select(func.count()).select_from(note_tags)) == 0


def test_delete_missing(note_repository):
    with pytest.raises(NoteNotFoundError):
        note_repository.delete("missing")


def test_attachments_loaded_in_order(note_repository, attachment_repository):
    note = note_repository.create(Note(title="Pics"))
    attachment_repository.create_attachment(note.id, AttachmentKind.IMAGE, "Images/b.jpg", 1)
    attachment_repository.create_attachment(note.id, AttachmentKind.IMAGE, "Images/a.jpg", 0)
    attachment_repository.create_attachment(note.id, AttachmentKind.AUDIO, "Audio/x.m4a", 0)

    loaded = note_repository.get(note.id)
    assert loaded.attachment_paths(AttachmentKind.IMAGE) == ["Images/a.jpg", "Images/b.jpg"]
    assert loaded.attachment_paths(AttachmentKind.AUDIO) == ["Audio/x.m4a"]


def test_counts(note_repository):
    note_repository.create(Note(title="A", category="Work"))
    note_repository.create(Note(title="B", category="Work"))
    note_repository.create(Note(title="C"))
    assert note_repository.count_notes() == 3
    assert note_repository.count_notes_by_category() == {"Work": 2}


def test_limit_and_offset(note_repository):
    for i in range(5):
        note_repository.create(Note(title=f"N{i}"))
    assert len(note_repository.list_notes(limit=2)) == 2
    assert len(note_repository.list_notes(offset=3)) == 2


def test_in_memory_database():
    repository = NoteRepository(engine=init_db(in_memory=True))
    note = repository.create(Note(title="Scratch"))
    assert repository.get(note.id).title == "Scratch"
