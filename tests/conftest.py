"""Common test fixtures for notekeeper."""

import tempfile
from pathlib import Path

import pytest

from notekeeper.config import config
from notekeeper.models.db_models import get_session_factory, init_db
from notekeeper.observability import metrics
from notekeeper.services.note_service import NoteService
from notekeeper.storage.attachment_repository import AttachmentRepository
from notekeeper.storage.blob_storage import BlobStorage
from notekeeper.storage.note_repository import NoteRepository
from notekeeper.storage.tag_repository import TagRepository


@pytest.fixture
def temp_dirs():
    """Create temporary directories for blobs and database."""
    with tempfile.TemporaryDirectory() as data_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(data_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    data_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "data_dir", data_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_notekeeper.db")
    monkeypatch.setattr(config, "log_dir", None)
    yield config


@pytest.fixture
def engine(test_config):
    """File-backed SQLite engine with the schema created."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def note_repository(session_factory):
    return NoteRepository(session_factory=session_factory)


@pytest.fixture
def attachment_repository(session_factory):
    return AttachmentRepository(session_factory)


@pytest.fixture
def tag_repository(session_factory):
    return TagRepository(session_factory)


@pytest.fixture
def blobs(test_config):
    return BlobStorage(test_config.get_data_dir())


@pytest.fixture
def note_service(note_repository, attachment_repository, tag_repository, blobs):
    """Create a NoteService wired to the temporary database and blob root."""
    return NoteService(
        repository=note_repository,
        attachments=attachment_repository,
        tags=tag_repository,
        blobs=blobs,
    )


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def jpeg_bytes():
    """Bytes that look enough like a JPEG for storage purposes."""
    return b"\xff\xd8\xff\xe0" + b"image-data" * 10 + b"\xff\xd9"


@pytest.fixture
def image_file(tmp_path, jpeg_bytes):
    path = tmp_path / "photo.jpg"
    path.write_bytes(jpeg_bytes)
    return path


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "memo.m4a"
    path.write_bytes(b"\x00\x00\x00\x20ftypM4A " + b"audio" * 100)
    return path
