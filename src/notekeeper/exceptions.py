"""Custom exceptions for notekeeper.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_TITLE_REQUIRED = 1004

    # Editor session errors (2xxx)
    LEDGER_INDEX_OUT_OF_RANGE = 2001
    SESSION_CLOSED = 2002

    # Recording errors (3xxx)
    RECORDING_FAILED = 3001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    PERSISTENCE_FAILED = 4010

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_ATTACHMENT_KIND = 7002
    PATH_TRAVERSAL_DETECTED = 7005


class NotekeeperError(Exception):
    """Base exception for all notekeeper errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(NotekeeperError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class NoteValidationError(NotekeeperError):
    """Raised when note data fails validation (e.g. an empty title)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class LedgerIndexError(NotekeeperError, IndexError):
    """Raised when a ledger position does not exist."""

    def __init__(self, kind: str, index: int, size: int):
        super().__init__(
            f"No {kind} attachment at position {index} (have {size})",
            code=ErrorCode.LEDGER_INDEX_OUT_OF_RANGE,
            details={"kind": kind, "index": index, "size": size}
        )
        self.kind = kind
        self.index = index
        self.size = size


class SessionClosedError(NotekeeperError):
    """Raised when an editor session is used after save or cancel."""

    def __init__(self, message: str = "Editor session is closed"):
        super().__init__(message, code=ErrorCode.SESSION_CLOSED)


class RecordingError(NotekeeperError):
    """Raised when a voice memo cannot be recorded."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RECORDING_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.original_error = original_error


class StorageError(NotekeeperError):
    """Raised for blob storage errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class PersistenceError(NotekeeperError):
    """Raised when a database write or read fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        note_id: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if note_id:
            details["note_id"] = note_id
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=ErrorCode.PERSISTENCE_FAILED, details=details)
        self.operation = operation
        self.note_id = note_id
        self.original_error = original_error


class ConfigurationError(NotekeeperError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(NotekeeperError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
