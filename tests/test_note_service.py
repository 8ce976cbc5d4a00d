"""Tests for NoteService: note CRUD, queries, export and attachment commit."""
import time

import frontmatter
import pytest

from notekeeper.exceptions import NoteNotFoundError, NoteValidationError, ValidationError
from notekeeper.models.schema import AttachmentKind
from notekeeper.observability import metrics
from notekeeper.services.ledger import AttachmentLedger
from notekeeper.services.note_service import NoteService
from tests.fakes import FailingBlobStorage

IMAGE = AttachmentKind.IMAGE
AUDIO = AttachmentKind.AUDIO


def _commit_new(note_service, note_id, kind, payloads):
    ledger = AttachmentLedger()
    for payload in payloads:
        ledger.add_item(kind, payload)
    return note_service.commit_attachments(note_id, ledger.compute_diff())


class TestNoteCrud:
    def test_create_and_get(self, note_service):
        note = note_service.create_note(
            "Groceries", content="milk, eggs", category="Home", tags=["todo"]
        )
        loaded = note_service.get_note(note.id)
        assert loaded.title == "Groceries"
        assert loaded.content == "milk, eggs"
        assert loaded.category == "Home"
        assert loaded.tags == ["todo"]
        assert metrics.get_metrics()["create_note"]["success_count"] == 1

    def test_create_requires_title(self, note_service):
        with pytest.raises(NoteValidationError):
            note_service.create_note("  ")

    def test_update_keeps_unspecified_fields(self, note_service):
        note = note_service.create_note("Title", content="body", category="Work")
        updated = note_service.update_note(note.id, title="New title")
        assert updated.title == "New title"
        assert updated.content == "body"
        assert updated.category == "Work"

    def test_update_clears_with_empty_values(self, note_service):
        note = note_service.create_note("Title", content="body", category="Work", tags=["a"])
        note_service.update_note(note.id, content="", category="", tags=[])
        loaded = note_service.get_note(note.id)
        assert loaded.content is None
        assert loaded.category is None
        assert loaded.tags == []

    def test_update_missing_note(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.update_note("nope", title="x")

    def test_delete_removes_blobs(self, note_service, jpeg_bytes):
        note = note_service.create_note("With photo")
        report = _commit_new(note_service, note.id, IMAGE, [jpeg_bytes])
        path = report.created[0]
        assert note_service.blobs.exists(path)

        note_service.delete_note(note.id)

        assert note_service.get_note(note.id) is None
        assert not note_service.blobs.exists(path)
        assert note_service.attachments.all_paths() == set()

    def test_delete_missing_note(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.delete_note("nope")


class TestQueries:
    @pytest.fixture
    def notes(self, note_service):
        first = note_service.create_note("Shopping list", content="Buy MILK", category="Home")
        time.sleep(0.01)
        second = note_service.create_note("Meeting", content="Discuss budget", category="Work", tags=["urgent"])
        time.sleep(0.01)
        third = note_service.create_note("Ideas", content=None, tags=["urgent", "later"])
        return first, second, third

    def test_newest_first(self, note_service, notes):
        first, second, third = notes
        assert [n.id for n in note_service.list_notes()] == [third.id, second.id, first.id]

    def test_update_moves_note_to_top(self, note_service, notes):
        first, _, _ = notes
        time.sleep(0.01)
        note_service.update_note(first.id, content="Buy milk and bread")
        assert note_service.list_notes()[0].id == first.id

    def test_search_is_case_insensitive_over_title_and_content(self, note_service, notes):
        first, second, _ = notes
        assert [n.id for n in note_service.search_notes("milk")] == [first.id]
        assert [n.id for n in note_service.search_notes("MEETING")] == [second.id]

    def test_search_folds_cyrillic_case(self, note_service):
        note = note_service.create_note("Заметка о поездке")
        assert [n.id for n in note_service.list_notes(search="заметка")] == [note.id]
        assert [n.id for n in note_service.search_notes("ПОЕЗДКЕ")] == [note.id]

    def test_search_ignores_case_and_diacritics(self, note_service):
        note = note_service.create_note("Éclair recipe", content="Crème pâtissière")
        assert [n.id for n in note_service.search_notes("éclair")] == [note.id]
        assert [n.id for n in note_service.search_notes("eclair")] == [note.id]
        assert [n.id for n in note_service.search_notes("CREME")] == [note.id]

    def test_blank_search_returns_everything(self, note_service, notes):
        assert len(note_service.list_notes(search="   ")) == 3

    def test_search_treats_wildcards_literally(self, note_service, notes):
        note_service.create_note("Progress", content="100% done")
        assert [n.title for n in note_service.search_notes("%")] == ["Progress"]

    def test_category_filter_combines_with_search(self, note_service, notes):
        _, second, _ = notes
        assert [n.id for n in note_service.get_notes_by_category("Work")] == [second.id]
        assert note_service.list_notes(search="milk", category="Work") == []

    def test_categories_sorted_and_distinct(self, note_service, notes):
        note_service.create_note("Another", category="Home")
        assert note_service.get_categories() == ["Home", "Work"]

    def test_tags(self, note_service, notes):
        _, second, third = notes
        assert {n.id for n in note_service.get_notes_by_tag("urgent")} == {second.id, third.id}
        assert note_service.get_tags_with_counts() == {"later": 1, "urgent": 2}

    def test_delete_unused_tags(self, note_service, notes):
        _, _, third = notes
        note_service.delete_note(third.id)
        assert note_service.delete_unused_tags() == 1
        assert "later" not in note_service.get_tags_with_counts()

    def test_summaries(self, note_service, notes):
        summaries = {s.title: s for s in note_service.list_summaries()}
        assert summaries["Ideas"].preview == "No content"
        assert summaries["Meeting"].category == "Work"
        assert summaries["Shopping list"].preview == "Buy MILK"


class TestExport:
    def test_markdown_with_front_matter(self, note_service, jpeg_bytes):
        note = note_service.create_note(
            "Trip", content="Lovely weather", category="Travel", tags=["summer", "beach"]
        )
        image = _commit_new(note_service, note.id, IMAGE, [jpeg_bytes]).created[0]

        post = frontmatter.loads(note_service.export_note(note.id))

        assert post["id"] == note.id
        assert post["category"] == "Travel"
        assert post["tags"] == ["summer", "beach"]
        assert post["images"] == [image]
        assert "audio" not in post.metadata
        assert post.content.startswith("# Trip")
        assert "Lovely weather" in post.content

    def test_unsupported_format(self, note_service):
        note = note_service.create_note("Trip")
        with pytest.raises(ValidationError):
            note_service.export_note(note.id, format="pdf")


class TestCommitAttachments:
    def test_writes_bytes_and_registers_records(self, note_service, jpeg_bytes):
        note = note_service.create_note("Photos")
        report = _commit_new(note_service, note.id, IMAGE, [jpeg_bytes, jpeg_bytes + b"2"])

        assert report.ok
        assert report.touched
        stored = note_service.attachments.load_attachments(note.id, IMAGE)
        assert [a.path for a in stored] == report.created
        assert [a.order_index for a in stored] == [0, 1]
        assert note_service.blobs.read(report.created[1]) == jpeg_bytes + b"2"
        assert all(p.startswith("Images/") and p.endswith(".jpg") for p in report.created)

    def test_copies_picked_files(self, note_service, image_file, audio_file):
        note = note_service.create_note("Files")
        _commit_new(note_service, note.id, IMAGE, [image_file])
        report = _commit_new(note_service, note.id, AUDIO, [audio_file])
        path = report.created[0]
        assert path.startswith("Audio/") and path.endswith(".m4a")
        assert note_service.blobs.read(path) == audio_file.read_bytes()
        assert audio_file.exists()

    def test_deletes_removed_items_and_compacts_order(self, note_service, jpeg_bytes):
        note = note_service.create_note("Photos")
        created = _commit_new(
            note_service, note.id, IMAGE, [jpeg_bytes + bytes([i]) for i in range(3)]
        ).created

        ledger = AttachmentLedger.from_attachments(note_service.load_attachments(note.id))
        ledger.remove_item(IMAGE, 0)
        report = note_service.commit_attachments(note.id, ledger.compute_diff())

        assert report.deleted == [created[0]]
        assert not note_service.blobs.exists(created[0])
        stored = note_service.attachments.load_attachments(note.id, IMAGE)
        assert [(a.path, a.order_index) for a in stored] == [(created[1], 0), (created[2], 1)]

    def test_touches_modified_date(self, note_service, jpeg_bytes):
        note = note_service.create_note("Photos")
        time.sleep(0.01)
        _commit_new(note_service, note.id, IMAGE, [jpeg_bytes])
        assert note_service.get_note(note.id).updated_at > note.updated_at

    def test_blob_delete_alone_touches_modified_date(self, note_service, jpeg_bytes):
        note = note_service.create_note("Photos")
        path = _commit_new(note_service, note.id, IMAGE, [jpeg_bytes]).created[0]
        ledger = AttachmentLedger.from_attachments(note_service.load_attachments(note.id))
        ledger.remove_item(IMAGE, 0)
        # Record already gone; only the file is left to remove
        note_service.attachments.delete_attachments(note.id, [path])
        before = note_service.get_note(note.id).updated_at
        time.sleep(0.01)

        report = note_service.commit_attachments(note.id, ledger.compute_diff())

        assert report.touched
        assert not note_service.blobs.exists(path)
        assert note_service.get_note(note.id).updated_at > before

    def test_empty_diff_changes_nothing(self, note_service):
        note = note_service.create_note("Plain")
        report = note_service.commit_attachments(note.id, AttachmentLedger().compute_diff())
        assert report.ok
        assert not report.touched
        assert note_service.get_note(note.id).updated_at == note.updated_at

    def test_write_failure_is_reported_not_raised(
        self, note_service, temp_dirs, jpeg_bytes
    ):
        data_dir, _ = temp_dirs
        service = NoteService(
            repository=note_service.repository,
            attachments=note_service.attachments,
            tags=note_service.tags,
            blobs=FailingBlobStorage(data_dir, fail_write=True),
        )
        note = service.create_note("Unlucky")
        report = _commit_new(service, note.id, IMAGE, [jpeg_bytes, jpeg_bytes])

        assert len(report.failures) == 2
        assert report.created == []
        assert not report.touched
        assert service.attachments.load_attachments(note.id, IMAGE) == []

    def test_delete_failure_still_removes_record(self, note_service, temp_dirs, jpeg_bytes):
        data_dir, _ = temp_dirs
        note = note_service.create_note("Stuck file")
        path = _commit_new(note_service, note.id, IMAGE, [jpeg_bytes]).created[0]
        service = NoteService(
            repository=note_service.repository,
            attachments=note_service.attachments,
            tags=note_service.tags,
            blobs=FailingBlobStorage(data_dir, fail_delete=True),
        )

        ledger = AttachmentLedger.from_attachments(service.load_attachments(note.id))
        ledger.remove_item(IMAGE, 0)
        report = service.commit_attachments(note.id, ledger.compute_diff())

        assert len(report.failures) == 1
        assert report.deleted == [path]
        assert service.attachments.load_attachments(note.id, IMAGE) == []

    def test_unsupported_payload_is_reported(self, note_service):
        note = note_service.create_note("Odd")
        report = _commit_new(note_service, note.id, IMAGE, [12345])
        assert len(report.failures) == 1


class TestOrphans:
    def test_clean_orphaned_blobs(self, note_service, jpeg_bytes):
        note = note_service.create_note("Keep")
        kept = _commit_new(note_service, note.id, IMAGE, [jpeg_bytes]).created[0]
        orphan = note_service.blobs.write(IMAGE, jpeg_bytes)

        assert note_service.clean_orphaned_blobs() == [orphan]
        assert note_service.blobs.exists(kept)
        assert not note_service.blobs.exists(orphan)

    def test_stats(self, note_service, jpeg_bytes):
        note = note_service.create_note("One", category="Home", tags=["x"])
        _commit_new(note_service, note.id, IMAGE, [jpeg_bytes])
        assert note_service.get_stats() == {
            "notes": 1,
            "by_category": {"Home": 1},
            "tags": 1,
            "attachments": 1,
        }
