"""Error taxonomy shared by the SQLite and JSON backends.

Every failure raised out of the store carries an ``ErrorKind`` so callers can
branch on ``exc.kind`` instead of matching on message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    FILE_NOT_FOUND = "FileNotFound"
    INVALID_STORE = "InvalidStore"
    INVALID_ARGUMENT = "InvalidArgument"
    DUPLICATE_IDENTIFIER = "DuplicateIdentifier"
    NOT_FOUND = "NotFound"
    TAG_RESOLUTION_FAILED = "TagResolutionFailed"
    TRANSACTION_FAILED = "TransactionFailed"
    PERSISTENCE_FAILED = "PersistenceFailed"


class GalleryStoreError(Exception):
    """Base class for every classified store failure."""

    kind = ErrorKind.TRANSACTION_FAILED


class StoreFileNotFoundError(GalleryStoreError):
    kind = ErrorKind.FILE_NOT_FOUND


class InvalidStoreError(GalleryStoreError):
    kind = ErrorKind.INVALID_STORE


class InvalidArgumentError(GalleryStoreError):
    kind = ErrorKind.INVALID_ARGUMENT


class DuplicateIdentifierError(GalleryStoreError):
    kind = ErrorKind.DUPLICATE_IDENTIFIER


class RecordNotFoundError(GalleryStoreError):
    kind = ErrorKind.NOT_FOUND


class TagResolutionError(GalleryStoreError):
    kind = ErrorKind.TAG_RESOLUTION_FAILED


class TransactionError(GalleryStoreError):
    kind = ErrorKind.TRANSACTION_FAILED


class PersistenceError(GalleryStoreError):
    kind = ErrorKind.PERSISTENCE_FAILED
