"""Voice memo recording.

The editor treats recording as an opaque capability: ask for permission,
start, then stop to get the finished file (or nothing, if the user
cancelled). Device audio APIs live behind this protocol; the
StreamRecorder here captures any byte stream into blob staging.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional, Protocol, runtime_checkable

from notekeeper.exceptions import RecordingError
from notekeeper.models.schema import AttachmentKind, utc_now
from notekeeper.storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass
class RecordingHandle:
    """State of one recording in progress.

    Attributes:
        path: Staging file the audio is written to.
        started_at: When recording started (UTC).
        bytes_written: Audio bytes written so far.
    """

    path: Path
    started_at: datetime.datetime = field(default_factory=utc_now)
    bytes_written: int = 0
    stream: Optional[BinaryIO] = field(default=None, repr=False)
    finished: bool = False


@runtime_checkable
class RecordingCapability(Protocol):
    """Contract for anything that can record a voice memo."""

    def request_permission(self) -> bool:
        """Ask for microphone access. False means recording must not start."""
        ...

    def start_recording(self) -> RecordingHandle:
        """Begin writing audio to a fresh staging file.

        Raises:
            RecordingError: If recording cannot start.
        """
        ...

    def stop(self, handle: RecordingHandle) -> Optional[Path]:
        """Finish recording.

        Returns:
            The completed file, or None if nothing usable was recorded.

        Raises:
            RecordingError: If the recording failed.
        """
        ...

    def cancel(self, handle: RecordingHandle) -> None:
        """Abandon a recording and remove its file."""
        ...


def iter_file_chunks(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield a file's contents in fixed-size chunks."""
    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield chunk


class StreamRecorder:
    """Records a stream of audio chunks into blob storage staging.

    Chunks are written as they arrive, so a long memo never sits in memory
    in one piece. The finished file stays in staging until the note is
    saved; BlobStorage.promote() then moves it into Audio/.
    """

    def __init__(self, blobs: BlobStorage, chunks: Iterable[bytes]):
        """Initialize the recorder.

        Args:
            blobs: Storage whose staging area receives the recording.
            chunks: Source of encoded audio data.
        """
        self.blobs = blobs
        self._chunks = chunks

    @classmethod
    def from_file(cls, blobs: BlobStorage, path: Path) -> "StreamRecorder":
        """Record by streaming an existing audio file."""
        return cls(blobs, iter_file_chunks(Path(path)))

    def request_permission(self) -> bool:
        return True

    def start_recording(self) -> RecordingHandle:
        path = self.blobs.new_staging_file(AttachmentKind.AUDIO)
        try:
            stream = open(path, "wb")
        except OSError as e:
            raise RecordingError(
                "Could not start recording", original_error=e
            ) from e
        logger.debug(f"Recording started: {path.name}")
        return RecordingHandle(path=path, stream=stream)

    def stop(self, handle: RecordingHandle) -> Optional[Path]:
        if handle.finished:
            raise RecordingError("Recording already finished")
        try:
            for chunk in self._chunks:
                handle.stream.write(chunk)
                handle.bytes_written += len(chunk)
        except OSError as e:
            self.cancel(handle)
            raise RecordingError("Recording failed", original_error=e) from e
        finally:
            if handle.stream is not None and not handle.stream.closed:
                handle.stream.close()
        handle.finished = True

        if handle.bytes_written == 0:
            logger.info("Recording produced no audio, discarding")
            self.blobs.discard(handle.path)
            return None

        logger.debug(f"Recording stopped: {handle.path.name} ({handle.bytes_written} bytes)")
        return handle.path

    def cancel(self, handle: RecordingHandle) -> None:
        if handle.stream is not None and not handle.stream.closed:
            handle.stream.close()
        handle.finished = True
        self.blobs.discard(handle.path)
        logger.debug(f"Recording cancelled: {handle.path.name}")

