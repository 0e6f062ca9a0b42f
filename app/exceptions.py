"""Error taxonomy for the storage service.

Every error raised by the storage layer carries an ``ErrorKind`` so callers can
tell a missing record apart from a missing blob even though both are reported
to HTTP clients the same way.
"""
from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    IO = "io"
    INDEX_WRITE = "index_write"
    INDEX_READ = "index_read"
    # Only meaningful for an optimistic index; the lock-based index never raises it
    CONFLICT = "conflict"


class StorageError(Exception):
    kind: ErrorKind = ErrorKind.IO
    status_code: int = 500
    public_message: str = "Internal storage error"

    def __init__(self, message: str = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class StorageValidationError(StorageError):
    kind = ErrorKind.VALIDATION
    status_code = 400
    public_message = "Invalid upload"


class MissingFileError(StorageValidationError):
    public_message = "No file provided"


class PayloadTooLargeError(StorageValidationError):
    public_message = "File size exceeds limit"


class UnsupportedMediaTypeError(StorageValidationError):
    public_message = "File type not allowed"


class NotFoundError(StorageError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    public_message = "File not found"


class RecordNotFoundError(NotFoundError):
    """No index entry exists for the requested id."""


class BlobNotFoundError(NotFoundError):
    """The blob file is missing from the upload directory."""


class StorageIOError(StorageError):
    kind = ErrorKind.IO


class IndexWriteError(StorageError):
    kind = ErrorKind.INDEX_WRITE


class IndexReadError(StorageError):
    kind = ErrorKind.INDEX_READ
