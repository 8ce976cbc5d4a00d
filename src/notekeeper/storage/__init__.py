"""Storage layer for notekeeper."""

from notekeeper.storage.attachment_repository import AttachmentRepository
from notekeeper.storage.base import Repository
from notekeeper.storage.blob_storage import BlobStorage
from notekeeper.storage.note_repository import NoteRepository
from notekeeper.storage.tag_repository import TagRepository

__all__ = [
    "Repository",
    "NoteRepository",
    "TagRepository",
    "AttachmentRepository",
    "BlobStorage",
]
