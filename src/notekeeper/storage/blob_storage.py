"""Filesystem blob storage for note attachments.

Binaries are addressed by relative paths of the form
``"<kind-directory>/<unique-name>.<ext>"`` (e.g. ``Images/3F2A....jpg``).
The paths are persisted by reference in the database, so the layout under
the root directory must never change.
"""

import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Iterable, List, Optional, Set

from notekeeper.exceptions import ErrorCode, StorageError
from notekeeper.models.schema import AttachmentKind
from notekeeper.utils import validate_relative_path

logger = logging.getLogger(__name__)

STAGING_DIRECTORY_NAME = ".staging"


class BlobStorage:
    """Stores attachment payloads as UUID-named files under a root directory.

    Layout::

        <root>/Images/<UUID>.jpg
        <root>/Audio/<UUID>.m4a
        <root>/.staging/<UUID>.m4a   (recordings in progress)
    """

    def __init__(self, root_dir: Path):
        """Initialize the storage, creating the kind directories if needed.

        Args:
            root_dir: Absolute directory all relative paths resolve against.
        """
        self.root_dir = Path(root_dir)
        self.staging_dir = self.root_dir / STAGING_DIRECTORY_NAME
        self.file_lock = threading.RLock()

        for kind in AttachmentKind:
            self._create_directory_if_needed(self.root_dir / kind.directory)
        self._create_directory_if_needed(self.staging_dir)
        self._cleanup_staging()

    @staticmethod
    def _create_directory_if_needed(directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create directory {directory}: {e}")

    def _cleanup_staging(self) -> None:
        """Remove recordings left behind by sessions that never finished."""
        if not self.staging_dir.exists():
            return

        orphaned_files = [p for p in self.staging_dir.iterdir() if p.is_file()]
        if orphaned_files:
            logger.warning(
                f"Found {len(orphaned_files)} orphaned staging files from previous "
                f"sessions. Cleaning up..."
            )
        for file_path in orphaned_files:
            try:
                file_path.unlink()
                logger.debug(f"Removed orphaned staging file: {file_path.name}")
            except OSError as e:
                logger.warning(
                    f"Failed to remove orphaned staging file {file_path.name}: {e}"
                )

    @staticmethod
    def _new_file_name(kind: AttachmentKind) -> str:
        return f"{str(uuid.uuid4()).upper()}.{kind.extension}"

    def absolute_path(self, relative_path: str) -> Path:
        """Resolve a stored relative path to its location on disk.

        Raises:
            StorageError: If the path would escape the storage root.
        """
        try:
            validate_relative_path(relative_path, "Blob path")
        except ValueError as e:
            raise StorageError(
                str(e),
                operation="resolve",
                path=relative_path,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            ) from e
        return self.root_dir / relative_path

    def write(self, kind: AttachmentKind, data: bytes) -> str:
        """Write a payload under a fresh unique name.

        Args:
            kind: Attachment kind; selects directory and extension.
            data: The binary payload.

        Returns:
            The relative path of the new blob.

        Raises:
            StorageError: If the file cannot be written.
        """
        file_name = self._new_file_name(kind)
        relative_path = f"{kind.directory}/{file_name}"
        file_path = self.root_dir / relative_path
        try:
            with self.file_lock:
                with open(file_path, "wb") as f:
                    f.write(data)
        except OSError as e:
            raise StorageError(
                f"Failed to save {kind.value}",
                operation="write",
                path=relative_path,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.debug(f"Wrote {len(data)} bytes to {relative_path}")
        return relative_path

    def read(self, relative_path: str) -> Optional[bytes]:
        """Read a payload.

        Returns:
            The bytes, or None when no such blob exists.

        Raises:
            StorageError: If the blob exists but cannot be read.
        """
        file_path = self.absolute_path(relative_path)
        if not file_path.is_file():
            return None
        try:
            with open(file_path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(
                f"Failed to read {relative_path}",
                operation="read",
                path=relative_path,
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def exists(self, relative_path: str) -> bool:
        """Check whether a blob is present."""
        return self.absolute_path(relative_path).is_file()

    def delete(self, relative_path: str) -> bool:
        """Delete a blob.

        Returns:
            True if a file was removed, False if it was already gone.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        file_path = self.absolute_path(relative_path)
        try:
            with self.file_lock:
                os.remove(file_path)
        except FileNotFoundError:
            logger.warning(f"Blob already missing, nothing to delete: {relative_path}")
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to delete {relative_path}",
                operation="delete",
                path=relative_path,
                code=ErrorCode.STORAGE_DELETE_FAILED,
                original_error=e,
            ) from e
        return True

    def delete_many(self, relative_paths: Iterable[str]) -> int:
        """Delete several blobs, logging failures instead of raising.

        Returns:
            Number of files actually removed.
        """
        removed = 0
        for relative_path in relative_paths:
            try:
                if self.delete(relative_path):
                    removed += 1
            except StorageError as e:
                logger.error(f"Failed to delete blob: {e}")
        return removed

    def list_paths(self, kind: AttachmentKind) -> List[str]:
        """List the relative paths of all stored blobs of one kind."""
        directory = self.root_dir / kind.directory
        if not directory.is_dir():
            return []
        return sorted(
            f"{kind.directory}/{p.name}" for p in directory.iterdir() if p.is_file()
        )

    def clean_orphans(self, referenced_paths: Set[str]) -> List[str]:
        """Delete blobs that no attachment record refers to.

        Args:
            referenced_paths: Every path still registered in the database.

        Returns:
            The relative paths that were removed.
        """
        orphans = [
            path
            for kind in AttachmentKind
            for path in self.list_paths(kind)
            if path not in referenced_paths
        ]
        removed = [path for path in orphans if self._delete_quietly(path)]
        if removed:
            logger.info(f"Removed {len(removed)} orphaned blobs")
        return removed

    def _delete_quietly(self, relative_path: str) -> bool:
        try:
            return self.delete(relative_path)
        except StorageError as e:
            logger.error(f"Failed to delete orphaned blob: {e}")
            return False

    # =========================================================================
    # Staging (recordings written incrementally before the note is saved)
    # =========================================================================

    def new_staging_file(self, kind: AttachmentKind) -> Path:
        """Allocate a staging location for a payload still being produced.

        The file itself is not created; the caller opens it for writing.
        """
        return self.staging_dir / self._new_file_name(kind)

    def is_staged(self, path: Path) -> bool:
        """Whether `path` points into the staging directory."""
        return Path(path).parent == self.staging_dir

    def promote(self, staged_path: Path, kind: AttachmentKind) -> str:
        """Move a finished staging file into permanent storage.

        Args:
            staged_path: A path returned by new_staging_file().
            kind: Attachment kind; selects the target directory.

        Returns:
            The relative path of the stored blob.

        Raises:
            StorageError: If the file is not staged or cannot be moved.
        """
        staged_path = Path(staged_path)
        relative_path = f"{kind.directory}/{staged_path.name}"
        if not self.is_staged(staged_path):
            raise StorageError(
                "Only staged files can be promoted",
                operation="promote",
                path=str(staged_path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
            )
        try:
            with self.file_lock:
                os.replace(staged_path, self.root_dir / relative_path)
        except OSError as e:
            raise StorageError(
                f"Failed to store staged {kind.value}",
                operation="promote",
                path=relative_path,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        return relative_path

    def discard(self, staged_path: Path) -> None:
        """Remove a staging file; missing files are ignored."""
        staged_path = Path(staged_path)
        if not self.is_staged(staged_path):
            logger.warning(f"Refusing to discard non-staged file {staged_path.name}")
            return
        try:
            staged_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to discard staging file {staged_path.name}: {e}")
